"""
Anti-evasion boundary for medops.

Design intent:
- Turn unsupported clinical assertions into quoted uncertainty entries.
- Keep trigger lexicons as immutable tables passed in by keyword.
- Never synthesize quotes; every quote is a literal slice of the note.
"""
