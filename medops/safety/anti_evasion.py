from __future__ import annotations

"""
Deterministic anti-evasion scan over raw clinical notes.

Design intent:
- Assertion without measurable evidence becomes an uncertainty, never a fact.
- Every ledger entry has the canonical shape `Label: "verbatim fragment"`.
- Same text and vitals always produce the same ledger.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from medops.internal_core.contracts import ExtractedFacts
from medops.utils.clinical_text import (
    VitalReading,
    find_first,
    find_vital_readings,
    fold_text,
    has_numeric_anchor,
    iter_fragments,
    literal_quote,
    narrow_literal,
)

UNSUPPORTED_STATEMENT_LABEL = "Afirmação sem evidência"

_CANONICAL_ENTRY_RE = re.compile(r'^.+?:\s*".+"$', re.DOTALL)
_ENTRY_SEPARATOR = ': "'


@dataclass(frozen=True)
class TriggerRule:
    label: str
    pattern: re.Pattern[str]


@dataclass(frozen=True)
class VagueVitalRule:
    label: str
    vital: str
    keyword: re.Pattern[str]
    intrinsic: re.Pattern[str] | None = None


@dataclass(frozen=True)
class EnforcementResult:
    ledger: list[str]
    forced: bool
    reasons: list[str] = field(default_factory=list)


def _trigger(label: str, pattern: str) -> TriggerRule:
    return TriggerRule(label=label, pattern=re.compile(pattern))


# Patterns run on accent-folded lower-case text.
DEFAULT_TRIGGER_LEXICON: tuple[TriggerRule, ...] = (
    _trigger("Diagnóstico afirmado sem evidência objetiva", r"\bsepses?\b"),
    _trigger("Diagnóstico afirmado sem evidência objetiva", r"\bsepse\s+grave\b"),
    _trigger("Diagnóstico afirmado sem evidência objetiva", r"\bseptic[oa]s?\b"),
    _trigger("Gravidade afirmada sem dados objetivos", r"\bgraves?\b"),
    _trigger("Gravidade afirmada sem dados objetivos", r"\bcritic[oa]s?\b"),
    _trigger("Gravidade afirmada sem dados objetivos", r"\bgravissim[oa]s?\b"),
    _trigger("Gravidade afirmada sem dados objetivos", r"\bmuito\s+mal\b"),
    _trigger("Afirmação clínica sem base", r"\btudo\s+indica\b"),
    _trigger("Gravidade subjetiva", r"\bconfia\b"),
    _trigger("Afirmação sem evidência", r"(?<!sem )\bcerteza\b"),
    _trigger("Diagnóstico de choque sem base objetiva", r"\bchoques?\b"),
    _trigger("Referência a evento crítico sem dados", r"\bparadas?\b"),
    _trigger("Conduta iniciada sem documentação de base", r"\biniciei\b"),
    _trigger("Conduta iniciada sem documentação de base", r"\bantibioticos?\b"),
)

_VAGUE_WORD_RE = re.compile(
    r"\b(?:normal|bo[am]|ruim|baix[oa]|alt[oa]|ok|alterad[oa]|estranh[oa]|meio|dessaturando)\b"
)

DEFAULT_VAGUE_VITAL_RULES: tuple[VagueVitalRule, ...] = (
    VagueVitalRule(
        label="Saturação vaga",
        vital="spo2",
        keyword=re.compile(r"\b(?:spo2|sato2|sat|saturacao|saturando|dessaturando|dessaturacao)\b"),
        intrinsic=re.compile(r"\b(?:dessaturando|saturando\s+baixo|sat\s+ruim|saturacao\s+baixa)\b"),
    ),
    VagueVitalRule(
        label="Pressão arterial vaga",
        vital="bp",
        keyword=re.compile(r"\b(?:pa|pressao(?:\s+arterial)?)\b"),
    ),
    VagueVitalRule(
        label="Frequência cardíaca vaga",
        vital="hr",
        keyword=re.compile(r"\b(?:fc|pulso|frequencia\s+cardiaca)\b"),
    ),
    VagueVitalRule(
        label="Frequência respiratória vaga",
        vital="rr",
        keyword=re.compile(r"\b(?:fr|frequencia\s+respiratoria)\b"),
    ),
    VagueVitalRule(
        label="Temperatura vaga",
        vital="temp",
        keyword=re.compile(r"\b(?:temp|temperatura|tax)\b"),
    ),
)

CONFLICT_LABEL = "Sinais vitais conflitantes"
_CONFLICT_VITAL_NAMES: dict[str, str] = {
    "bp": "PA",
    "hr": "FC",
    "rr": "FR",
    "temp": "Temperatura",
}


def format_uncertainty(label: str, quote: str) -> str:
    return f'{label}: "{quote}"'


def parse_uncertainty(entry: str) -> tuple[str, str]:
    """Split a ledger entry on the first `: "` and trim the trailing quote."""
    text = str(entry or "").strip()
    idx = text.find(_ENTRY_SEPARATOR)
    if idx < 0:
        return "", text
    quote = text[idx + len(_ENTRY_SEPARATOR) :]
    if quote.endswith('"'):
        quote = quote[:-1]
    return text[:idx].strip(), quote


def has_assertive_trigger(raw_text: str, *, lexicon: Sequence[TriggerRule] = DEFAULT_TRIGGER_LEXICON) -> bool:
    folded = fold_text(raw_text)
    return any(rule.pattern.search(folded) for rule in lexicon)


def find_assertive_claims(raw_text: str, *, lexicon: Sequence[TriggerRule] = DEFAULT_TRIGGER_LEXICON) -> list[str]:
    out: list[str] = []
    for rule in lexicon:
        hit = find_first(rule.pattern, raw_text)
        if hit is None:
            continue
        fragment, start, end = hit
        out.append(format_uncertainty(rule.label, literal_quote(fragment, start, end)))
    return out


def scan_assertive_claims(
    raw_text: str,
    vitals: Any = None,
    *,
    lexicon: Sequence[TriggerRule] = DEFAULT_TRIGGER_LEXICON,
    vague_vital_rules: Sequence[VagueVitalRule] = DEFAULT_VAGUE_VITAL_RULES,
) -> list[str]:
    """
    Pre-scan raw text for strong claims lacking objective support.

    Triggers only fire when neither the text nor the given vitals carry a
    numeric anchor. Vague vital mentions and conflicting readings are reported
    regardless of anchors.
    """
    out: list[str] = []
    readings = find_vital_readings(raw_text)
    if not has_numeric_anchor(raw_text, vitals):
        out.extend(find_assertive_claims(raw_text, lexicon=lexicon))
    out.extend(_vague_vital_entries(raw_text, readings, vague_vital_rules))
    out.extend(_conflicting_reading_entries(readings))
    return dedupe_case_insensitive(out)


def enforce_uncertainties(facts: ExtractedFacts | Mapping[str, Any] | None, raw_text: str) -> EnforcementResult:
    """
    Sanitize the extractor's uncertainty list and union in the deterministic pre-scan.

    Malformed entries are repaired in place, never dropped.
    """
    if isinstance(facts, ExtractedFacts):
        existing: Any = list(facts.uncertainties)
        vitals: Any = facts.vitals
    elif isinstance(facts, Mapping):
        existing = facts.get("uncertainties")
        vitals = facts.get("vitals")
    else:
        existing = None
        vitals = None

    reasons: list[str] = []
    forced = False

    if not isinstance(existing, list):
        existing = []
        forced = True
        _add_reason(reasons, "uncertainties_missing_or_not_array")

    coerced = [_coerce_entry(item) for item in existing]
    coerced = [item for item in coerced if item]

    fixed: list[str] = []
    for line in coerced:
        if _CANONICAL_ENTRY_RE.match(line):
            fixed.append(line)
            continue
        forced = True
        _add_reason(reasons, "uncertainty_bad_format_fixed")
        fixed.append(format_uncertainty(UNSUPPORTED_STATEMENT_LABEL, narrow_literal(line)))
    ledger = dedupe_case_insensitive(fixed)

    folded_source = fold_text(raw_text)
    for entry in ledger:
        _, quote = parse_uncertainty(entry)
        if quote and fold_text(quote) not in folded_source:
            _add_reason(reasons, "uncertainty_quote_not_in_source")
            break

    prescan = scan_assertive_claims(raw_text, vitals)
    present = {_norm(item) for item in ledger}
    missing = [item for item in prescan if _norm(item) not in present]
    if missing:
        forced = True
        _add_reason(reasons, "prescan_injected")
        ledger = dedupe_case_insensitive(ledger + missing)

    return EnforcementResult(ledger=ledger, forced=forced, reasons=reasons)


def dedupe_case_insensitive(lines: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for line in lines:
        key = _norm(line)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(str(line).strip())
    return out


def _vague_vital_entries(
    raw_text: str,
    readings: Sequence[VitalReading],
    rules: Sequence[VagueVitalRule],
) -> list[str]:
    measured = {item.vital for item in readings}
    out: list[str] = []
    for rule in rules:
        if rule.vital in measured:
            continue
        for fragment in iter_fragments(raw_text):
            folded = fold_text(fragment.text)
            keyword = rule.keyword.search(folded)
            if keyword is None:
                continue
            intrinsic = rule.intrinsic.search(folded) if rule.intrinsic is not None else None
            if intrinsic is None and not _VAGUE_WORD_RE.search(folded):
                continue
            anchor = intrinsic or keyword
            quote = literal_quote(fragment, fragment.start + anchor.start(), fragment.start + anchor.end())
            out.append(format_uncertainty(rule.label, quote))
            break
    return out


def _conflicting_reading_entries(readings: Sequence[VitalReading]) -> list[str]:
    out: list[str] = []
    first_seen: dict[str, tuple[float, float | None]] = {}
    for item in readings:
        name = _CONFLICT_VITAL_NAMES.get(item.vital)
        if name is None:
            continue
        value = (item.value, item.secondary)
        baseline = first_seen.setdefault(item.vital, value)
        if value == baseline:
            continue
        quote = literal_quote(item.fragment, item.start, item.end)
        out.append(format_uncertainty(f"{CONFLICT_LABEL} ({name})", quote))
    return out


def _coerce_entry(item: Any) -> str:
    if item is None:
        return ""
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, Mapping):
        parts = [f"{key}: {value}" for key, value in item.items()]
        return " | ".join(parts).strip()
    return str(item).strip()


def _add_reason(reasons: list[str], reason: str) -> None:
    if reason not in reasons:
        reasons.append(reason)


def _norm(value: Any) -> str:
    return str(value or "").strip().lower()
