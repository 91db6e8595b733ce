"""
Case lifecycle boundary for medops.

Design intent:
- Run one note through extraction, normalization, gating and audit.
- Persist exactly one immutable record per ingest, even when services fail.
"""
