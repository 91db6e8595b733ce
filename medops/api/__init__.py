"""
HTTP boundary for medops.

Design intent:
- Accept raw notes, return case ids and gate outcomes.
- Map input problems to 422 and unknown cases to 404; never 500 on service failure.
"""
