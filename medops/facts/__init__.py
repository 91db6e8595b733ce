"""
Fact extraction and normalization boundary for medops.

Design intent:
- Accept untrusted extraction output and repair it into ExtractedFacts.
- Only ever copy literal values from the note.
"""
