"""
Risk gate boundary for medops.

Design intent:
- Decide escalation from normalized facts plus the raw note.
- Emit exactly one reason code from a closed, versioned vocabulary.
- Avoid autonomous diagnosis or treatment recommendation outputs.
"""
