from medops.audit.fallback import build_fallback_report
from medops.internal_core.contracts import CaseRecord, ExtractedFacts, GatePayload
from medops.note.summary import render_case_summary, split_uncertainty


def _record(facts: ExtractedFacts, *, with_audit: bool) -> CaseRecord:
    return CaseRecord(
        id="case_test",
        created_at="2026-01-01T00:00:00+00:00",
        raw_text="Paciente confia.",
        facts=facts,
        gate=GatePayload(run_audit=with_audit, reason_code="uncertainty" if with_audit else "skip-safe-case"),
        audit=build_fallback_report(facts) if with_audit else None,
        facts_provider="rules",
        audit_provider="rules_patched" if with_audit else None,
    )


def test_split_uncertainty_renders_label_and_quote() -> None:
    assert split_uncertainty('Gravidade subjetiva: "confia"') == 'Gravidade subjetiva — "confia"'
    assert split_uncertainty("texto livre") == "texto livre"


def test_summary_renders_non_empty_sections_only() -> None:
    facts = ExtractedFacts(uncertainties=['Gravidade subjetiva: "confia"'])
    text = render_case_summary(_record(facts, with_audit=True))

    assert text.startswith("# Gate\nrun_audit=true | reason=uncertainty\n")
    assert "## A — Airway" not in text
    assert "## K — Safety/Uncertainties\nFindings:\n- Gravidade subjetiva — \"confia\"" in text
    assert "## B — Breathing\nMissing:\n- SpO2 not documented" in text


def test_summary_without_audit() -> None:
    text = render_case_summary(_record(ExtractedFacts(), with_audit=False))
    assert "audit_provider=none" in text
    assert text.endswith("No audit sections to render.\n")
