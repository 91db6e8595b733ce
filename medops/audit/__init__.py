"""
Audit boundary for medops.

Design intent:
- Validate generated audits strictly and fall back deterministically.
- Guarantee the safety section discloses every uncertainty, whatever the generator did.
"""
