"""
medops package.

Design intent:
- Triage emergency-department notes and audit the risky ones.
- Keep the deterministic safety core (safety/risk/audit) free of I/O.
- Treat model-backed extraction and audit generation as replaceable adapters.
"""
