from __future__ import annotations

"""
Rule-based minimal fact extraction.

Design intent:
- Deterministic stand-in for the model extractor, also used as its fallback.
- Copy literal values only; leave everything else unset.
"""

import re

from medops.facts.normalizer import reconcile_vitals
from medops.internal_core.contracts import ExtractedFacts, OxygenTherapy, PresentingProblem
from medops.utils.clinical_text import (
    find_oxygen_device,
    find_oxygen_flow,
    find_vital_readings,
    fold_text,
    iter_fragments,
    narrow_literal,
)

_ANTIBIOTIC_RE = re.compile(
    r"\b(?:ceftriaxona|piperacilina(?:[\s/-]*tazobactam)?|azitromicina|amoxicilina(?:[\s/-]*clavulanato)?|"
    r"vancomicina|meropenem|cefepime|levofloxacino|ciprofloxacino|clindamicina|metronidazol|oxacilina)\b"
)


def extract_minimal_facts(raw_text: str) -> ExtractedFacts:
    text = str(raw_text or "")
    fragments = iter_fragments(text)

    presenting_problem = None
    if fragments:
        presenting_problem = PresentingProblem(chief_complaint=narrow_literal(fragments[0].text))

    flow = find_oxygen_flow(text)
    device = find_oxygen_device(text)
    oxygen_therapy = None
    if device is not None or flow is not None:
        oxygen_therapy = OxygenTherapy(device=device, flow_l_min=flow)

    return ExtractedFacts(
        presenting_problem=presenting_problem,
        vitals=reconcile_vitals(None, find_vital_readings(text), []),
        oxygen_therapy=oxygen_therapy,
        medications=find_antibiotics(text),
    )


def find_antibiotics(raw_text: str) -> list[str]:
    """Antibiotic names as written in the note, first mention order."""
    text = str(raw_text or "")
    folded = fold_text(text)
    out: list[str] = []
    seen: set[str] = set()
    for match in _ANTIBIOTIC_RE.finditer(folded):
        key = match.group(0)
        if key in seen:
            continue
        seen.add(key)
        out.append(text[match.start() : match.end()])
    return out
