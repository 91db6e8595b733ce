import re

from medops.facts.normalizer import normalize_facts
from medops.internal_core.contracts import ExtractedFacts, OxygenTherapy, Vitals
from medops.safety.anti_evasion import TriggerRule
from medops.risk.gate import (
    GATE_RULES,
    GateDecision,
    ReasonCode,
    build_gate_context,
    classify_case,
)


def _classify_text(text: str) -> GateDecision:
    facts = normalize_facts({"uncertainties": []}, text).facts
    return classify_case(facts, text)


def _payload(run_audit: bool, reason_code: str) -> dict[str, object]:
    return {"run_audit": run_audit, "reason_code": reason_code, "vocabulary_version": "gate_reasons_v1"}


def test_reason_vocabulary_is_stable() -> None:
    assert {item.value for item in ReasonCode} == {
        "uncertainty",
        "hard-risk-hypoxemia",
        "hard-risk-neuro-change",
        "documentation-risk",
        "operational-chaos",
        "soft-risk-plus-uncertainty",
        "soft-risk-plus-chaos",
        "skip-safe-case",
    }


def test_rule_order_is_preserved() -> None:
    assert [rule.reason_code for rule in GATE_RULES] == [
        ReasonCode.UNCERTAINTY,
        ReasonCode.HARD_RISK_HYPOXEMIA,
        ReasonCode.HARD_RISK_NEURO_CHANGE,
        ReasonCode.DOCUMENTATION_RISK,
        ReasonCode.OPERATIONAL_CHAOS,
        ReasonCode.SOFT_RISK_PLUS_UNCERTAINTY,
        ReasonCode.SOFT_RISK_PLUS_CHAOS,
        ReasonCode.UNCERTAINTY,
    ]


def test_room_air_hypoxemia_scenario() -> None:
    decision = _classify_text("Sat 89% em ar ambiente. Dispneia.")
    assert decision.to_payload() == _payload(True, "hard-risk-hypoxemia")


def test_hedging_without_numbers_scenario() -> None:
    decision = _classify_text("Paciente, acho que piorou, talvez.")
    assert decision.to_payload() == _payload(True, "uncertainty")


def test_mild_case_is_skipped() -> None:
    decision = _classify_text("Tosse leve, exame ok.")
    assert decision.to_payload() == _payload(False, "skip-safe-case")


def test_unsupported_severity_and_treatment_claims_scenario() -> None:
    text = "Situação crítica, iniciei antibiótico."
    result = normalize_facts({"uncertainties": []}, text)
    labels = [entry.split(":", 1)[0] for entry in result.facts.uncertainties]
    assert "Gravidade afirmada sem dados objetivos" in labels
    assert "Conduta iniciada sem documentação de base" in labels
    assert classify_case(result.facts, text).reason_code is ReasonCode.UNCERTAINTY


def test_assertive_trigger_without_anchor_never_skips() -> None:
    for text in ("Paciente grave.", "Choque?", "Tudo indica sepse", "Paciente muito mal"):
        decision = classify_case(ExtractedFacts(), text)
        assert decision.reason_code is ReasonCode.UNCERTAINTY
        assert decision.run_audit is True


def test_low_spo2_in_facts_wins_regardless_of_text() -> None:
    facts = ExtractedFacts(vitals=Vitals(spo2_initial=85))
    decision = classify_case(facts, "Paciente crítico, correria no plantão, confuso.")
    assert decision.reason_code is ReasonCode.HARD_RISK_HYPOXEMIA


def test_gate_accepts_loose_mapping_facts() -> None:
    decision = classify_case({"vitals": {"spo2": 88}}, "Dispneia aos esforços")
    assert decision.reason_code is ReasonCode.HARD_RISK_HYPOXEMIA


def test_gate_accepts_missing_facts() -> None:
    assert classify_case(None, "Tosse leve, exame ok.").reason_code is ReasonCode.SKIP_SAFE_CASE


def test_neuro_change_rule() -> None:
    assert _classify_text("Paciente confuso desde ontem.").reason_code is ReasonCode.HARD_RISK_NEURO_CHANGE


def test_neuro_change_in_facts_only() -> None:
    facts = ExtractedFacts(physical_exam=["Sonolento ao exame"])
    assert classify_case(facts, "Tosse leve").reason_code is ReasonCode.HARD_RISK_NEURO_CHANGE


def test_documentation_failure_rule() -> None:
    decision = _classify_text("Não anotei os sinais vitais do paciente.")
    assert decision.reason_code is ReasonCode.DOCUMENTATION_RISK


def test_operational_chaos_rule() -> None:
    decision = _classify_text("Plantão lotado, paciente com tosse.")
    assert decision.reason_code is ReasonCode.OPERATIONAL_CHAOS


def test_soft_risk_plus_uncertainty_rule() -> None:
    decision = _classify_text("Paciente em cateter de O2, talvez melhor.")
    assert decision.reason_code is ReasonCode.SOFT_RISK_PLUS_UNCERTAINTY


def test_soft_risk_from_facts_oxygen_therapy() -> None:
    facts = ExtractedFacts(oxygen_therapy=OxygenTherapy(device="venturi"))
    decision = classify_case(facts, "Paciente estável, parece bem")
    assert decision.reason_code is ReasonCode.SOFT_RISK_PLUS_UNCERTAINTY


def test_soft_risk_plus_chaos_is_shadowed_by_operational_chaos() -> None:
    text = "Em O2 e correria no plantão"
    ctx = build_gate_context(ExtractedFacts(), text)
    soft_chaos = GATE_RULES[6]
    assert soft_chaos.reason_code is ReasonCode.SOFT_RISK_PLUS_CHAOS
    assert soft_chaos.predicate(ctx) is True
    assert classify_case(ExtractedFacts(), text).reason_code is ReasonCode.OPERATIONAL_CHAOS


def test_hedging_with_numeric_anchor_is_skipped() -> None:
    decision = _classify_text("Acho que melhorou, FC 80 bpm.")
    assert decision.reason_code is ReasonCode.SKIP_SAFE_CASE


def test_custom_rule_table_is_injectable() -> None:
    rules = GATE_RULES[:1]
    decision = classify_case(ExtractedFacts(), "Paciente confuso", rules=rules)
    assert decision.reason_code is ReasonCode.SKIP_SAFE_CASE


def test_saturation_written_with_o2_label_is_parsed() -> None:
    for text in ("Sat O2 89% em ar ambiente. Dispneia.", "Sat de O2 89%. Dispneia."):
        decision = _classify_text(text)
        assert decision.reason_code is ReasonCode.HARD_RISK_HYPOXEMIA


def test_saturation_label_is_not_a_soft_risk_marker() -> None:
    decision = _classify_text("Sat O2 97%, parece bem.")
    assert decision.reason_code is ReasonCode.SKIP_SAFE_CASE


def test_plural_trigger_forms_escalate() -> None:
    for text in (
        "Já em uso de antibióticos, sem melhora.",
        "Dois pacientes graves no box.",
        "Casos críticos no corredor.",
        "Histórico de paradas anteriores.",
    ):
        assert _classify_text(text).reason_code is ReasonCode.UNCERTAINTY, text


def test_plural_soft_risk_marker_with_hedging() -> None:
    facts = ExtractedFacts(vitals=Vitals(hr=88))
    decision = classify_case(facts, "Segue com antibióticos, parece melhor")
    assert decision.reason_code is ReasonCode.SOFT_RISK_PLUS_UNCERTAINTY


def test_custom_lexicon_is_passed_to_context() -> None:
    lexicon = (TriggerRule(label="Termo local", pattern=re.compile(r"\bpiorou\b")),)
    flagged = classify_case(ExtractedFacts(), "Paciente piorou.", lexicon=lexicon)
    default_term = classify_case(ExtractedFacts(), "Paciente grave.", lexicon=lexicon)
    assert flagged.reason_code is ReasonCode.UNCERTAINTY
    assert default_term.reason_code is ReasonCode.SKIP_SAFE_CASE
