from __future__ import annotations

"""
Gate classifier: decide whether a case escalates to a full audit.

Design intent:
- Ordered (reason_code, predicate) rules, first match wins.
- Rule order is part of the contract because categories overlap.
- Pure and total: no I/O, no state, any facts shape is accepted.
"""

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Sequence

from medops.facts.coercion import coerce_extracted_facts
from medops.internal_core.contracts import GATE_REASON_VOCABULARY_VERSION, ExtractedFacts
from medops.safety.anti_evasion import DEFAULT_TRIGGER_LEXICON, TriggerRule, has_assertive_trigger
from medops.utils.clinical_text import fold_text, has_numeric_anchor, mask_saturation_label, spo2_from_text

HYPOXEMIA_SPO2_THRESHOLD = 92.0


class ReasonCode(str, Enum):
    UNCERTAINTY = "uncertainty"
    HARD_RISK_HYPOXEMIA = "hard-risk-hypoxemia"
    HARD_RISK_NEURO_CHANGE = "hard-risk-neuro-change"
    DOCUMENTATION_RISK = "documentation-risk"
    OPERATIONAL_CHAOS = "operational-chaos"
    SOFT_RISK_PLUS_UNCERTAINTY = "soft-risk-plus-uncertainty"
    SOFT_RISK_PLUS_CHAOS = "soft-risk-plus-chaos"
    SKIP_SAFE_CASE = "skip-safe-case"


@dataclass(frozen=True)
class GateDecision:
    run_audit: bool
    reason_code: ReasonCode

    def to_payload(self) -> dict[str, Any]:
        return {
            "run_audit": self.run_audit,
            "reason_code": self.reason_code.value,
            "vocabulary_version": GATE_REASON_VOCABULARY_VERSION,
        }


@dataclass(frozen=True)
class GateContext:
    facts: ExtractedFacts
    raw_text: str
    folded: str
    facts_text: str
    has_anchor: bool
    has_trigger: bool
    spo2: float | None


@dataclass(frozen=True)
class GateRule:
    reason_code: ReasonCode
    predicate: Callable[[GateContext], bool]


_NEURO_RE = re.compile(
    r"\b(?:confus[oa]|confusao|desorientad[oa]|desorientacao|agitad[oa]|agitacao|"
    r"rebaixamento|sonolent[oa]|sonolencia)\b"
)
_DOCUMENTATION_RE = re.compile(
    r"\b(?:nao\s+(?:anotei|registrei|aferi|medi|documentei)|"
    r"esqueci\s+de\s+(?:anotar|registrar|aferir)|"
    r"sem\s+registro|"
    r"(?:prontuario|registro|evolucao)\s+incomplet[oa]|"
    r"sem\s+sinais\s+vitais|"
    r"sinais\s+vitais\s+nao\s+(?:aferidos|registrados|anotados))\b"
)
_CHAOS_RE = re.compile(
    r"\b(?:correria|sem\s+tempo|nao\s+deu\s+tempo|superlotad[oa]|lotad[oa]|cheio|caos|"
    r"plantao\s+pegando\s+fogo|to\s+perdido|sistema\s+(?:caiu|fora\s+do\s+ar|travou|travado))\b"
)
_SOFT_RISK_RE = re.compile(
    r"(?<![a-z0-9])(?:o2|oxigenio|cateter(?:es)?|mascaras?|venturi|antibioticos?|atbs?|"
    r"ceftriaxona|piperacilina|azitromicina)(?![a-z0-9])"
)
_HEDGING_RE = re.compile(
    r"\b(?:nao\s+sei|incert[oa]|duvida|talvez|parece|provavel|provavelmente|acho\s+que|sem\s+certeza)\b"
)


def build_gate_context(
    facts: ExtractedFacts | Any,
    raw_text: str,
    *,
    lexicon: Sequence[TriggerRule] = DEFAULT_TRIGGER_LEXICON,
) -> GateContext:
    if not isinstance(facts, ExtractedFacts):
        facts, _ = coerce_extracted_facts(facts)
    text = str(raw_text or "")
    return GateContext(
        facts=facts,
        raw_text=text,
        folded=fold_text(text),
        facts_text=fold_text(" | ".join(_facts_strings(facts))),
        has_anchor=has_numeric_anchor(text, facts.vitals),
        has_trigger=has_assertive_trigger(text, lexicon=lexicon),
        spo2=_known_spo2(facts, text),
    )


def _unsupported_assertion(ctx: GateContext) -> bool:
    return ctx.has_trigger and not ctx.has_anchor


def _hypoxemia(ctx: GateContext) -> bool:
    return ctx.spo2 is not None and ctx.spo2 < HYPOXEMIA_SPO2_THRESHOLD


def _neuro_change(ctx: GateContext) -> bool:
    return bool(_NEURO_RE.search(ctx.folded) or _NEURO_RE.search(ctx.facts_text))


def _documentation_failure(ctx: GateContext) -> bool:
    return bool(_DOCUMENTATION_RE.search(ctx.folded))


def _operational_chaos(ctx: GateContext) -> bool:
    return bool(_CHAOS_RE.search(ctx.folded))


def _soft_risk(ctx: GateContext) -> bool:
    if ctx.facts.oxygen_therapy is not None:
        return True
    if _SOFT_RISK_RE.search(mask_saturation_label(ctx.folded)):
        return True
    meds = fold_text(" | ".join(ctx.facts.medications))
    return bool(_SOFT_RISK_RE.search(meds))


def _uncertainty_signal(ctx: GateContext) -> bool:
    return bool(ctx.facts.uncertainties) or bool(_HEDGING_RE.search(ctx.folded))


def _soft_risk_plus_uncertainty(ctx: GateContext) -> bool:
    return _soft_risk(ctx) and _uncertainty_signal(ctx)


def _soft_risk_plus_chaos(ctx: GateContext) -> bool:
    return _soft_risk(ctx) and _operational_chaos(ctx)


def _unresolved_uncertainty(ctx: GateContext) -> bool:
    return _uncertainty_signal(ctx) and not ctx.has_anchor


GATE_RULES: tuple[GateRule, ...] = (
    GateRule(ReasonCode.UNCERTAINTY, _unsupported_assertion),
    GateRule(ReasonCode.HARD_RISK_HYPOXEMIA, _hypoxemia),
    GateRule(ReasonCode.HARD_RISK_NEURO_CHANGE, _neuro_change),
    GateRule(ReasonCode.DOCUMENTATION_RISK, _documentation_failure),
    GateRule(ReasonCode.OPERATIONAL_CHAOS, _operational_chaos),
    GateRule(ReasonCode.SOFT_RISK_PLUS_UNCERTAINTY, _soft_risk_plus_uncertainty),
    GateRule(ReasonCode.SOFT_RISK_PLUS_CHAOS, _soft_risk_plus_chaos),
    GateRule(ReasonCode.UNCERTAINTY, _unresolved_uncertainty),
)


def classify_case(
    facts: ExtractedFacts | Any,
    raw_text: str,
    *,
    rules: Sequence[GateRule] = GATE_RULES,
    lexicon: Sequence[TriggerRule] = DEFAULT_TRIGGER_LEXICON,
) -> GateDecision:
    ctx = build_gate_context(facts, raw_text, lexicon=lexicon)
    for rule in rules:
        if rule.predicate(ctx):
            return GateDecision(run_audit=True, reason_code=rule.reason_code)
    return GateDecision(run_audit=False, reason_code=ReasonCode.SKIP_SAFE_CASE)


def _known_spo2(facts: ExtractedFacts, raw_text: str) -> float | None:
    value = facts.vitals.spo2_initial if facts.vitals is not None else None
    if value is not None and math.isfinite(value):
        return float(value)
    return spo2_from_text(raw_text)


def _facts_strings(facts: ExtractedFacts) -> list[str]:
    out: list[str] = []
    problem = facts.presenting_problem
    if problem is not None:
        if problem.chief_complaint:
            out.append(problem.chief_complaint)
        out.extend(problem.associated_symptoms)
    out.extend(facts.physical_exam)
    return out
