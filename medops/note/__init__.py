"""
Case rendering boundary for medops.

Design intent:
- Render stored cases as plain text for clinician review.
- Keep rendering deterministic and free of new content.
"""
