from __future__ import annotations

"""
Built-in smoke scenarios for the ingest pipeline.

Design intent:
- Run a fixed set of representative notes end to end and compare gate outcomes.
- Check the hard-risk audit minimums on the scenarios that escalate.
- Use a scratch store so smoke runs never touch stored cases.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from medops.cases.orchestrator import ExtractFn, GenerateFn, ingest_case
from medops.internal_core.config import ServiceConfig
from medops.internal_core.contracts import AuditReport
from medops.internal_core.store import InMemoryCaseStore


@dataclass(frozen=True)
class AuditExpectation:
    section: str
    kind: str
    contains: str


@dataclass(frozen=True)
class SmokeScenario:
    name: str
    raw_text: str
    ran_audit: bool
    reason_code: str
    audit_checks: tuple[AuditExpectation, ...] = ()


@dataclass(frozen=True)
class SmokeResult:
    name: str
    ok: bool
    expected: dict[str, Any]
    got: dict[str, Any]
    audit_ok: Optional[bool] = None
    failed_checks: list[str] = field(default_factory=list)


SMOKE_SCENARIOS: tuple[SmokeScenario, ...] = (
    SmokeScenario(
        name="hard_risk_spo2",
        raw_text="Paciente em PS. Sat 89% em ar ambiente. Dispneia.",
        ran_audit=True,
        reason_code="hard-risk-hypoxemia",
        audit_checks=(
            AuditExpectation("B", "findings", "SpO2 initial: 89%"),
            AuditExpectation("B", "missing", "SpO2 target not documented"),
            AuditExpectation("B", "missing", "oxygen therapy status not documented"),
            AuditExpectation("I", "findings", "chief complaint:"),
        ),
    ),
    SmokeScenario(
        name="uncertainty_text",
        raw_text="Paciente em PS, acho que iniciou hoje, talvez piorando.",
        ran_audit=True,
        reason_code="uncertainty",
        audit_checks=(AuditExpectation("K", "missing", "review required"),),
    ),
    SmokeScenario(
        name="safe_minimal",
        raw_text="Paciente em PS, tosse leve, exame ok.",
        ran_audit=False,
        reason_code="skip-safe-case",
    ),
    SmokeScenario(
        name="neuro_change",
        raw_text="Paciente em PS. Muito agitado e confuso desde a chegada.",
        ran_audit=True,
        reason_code="hard-risk-neuro-change",
    ),
    SmokeScenario(
        name="soft_risk_no_trigger",
        raw_text="Paciente em PS com O₂ em cateter, mas sem outras info.",
        ran_audit=False,
        reason_code="skip-safe-case",
    ),
)


def run_smoke_scenarios(
    *,
    config: ServiceConfig,
    extract_fn: Optional[ExtractFn] = None,
    generate_fn: Optional[GenerateFn] = None,
    scenarios: tuple[SmokeScenario, ...] = SMOKE_SCENARIOS,
) -> list[SmokeResult]:
    store = InMemoryCaseStore()
    results: list[SmokeResult] = []
    for scenario in scenarios:
        outcome = ingest_case(
            scenario.raw_text,
            store=store,
            config=config,
            extract_fn=extract_fn,
            generate_fn=generate_fn,
        )
        record = store.get_case(outcome.case_id)
        base_ok = outcome.ran_audit == scenario.ran_audit and outcome.reason_code == scenario.reason_code

        audit_ok: Optional[bool] = None
        failed: list[str] = []
        if scenario.audit_checks:
            failed = _failed_audit_checks(record.audit if record else None, scenario.audit_checks)
            audit_ok = not failed

        results.append(
            SmokeResult(
                name=scenario.name,
                ok=base_ok and audit_ok is not False,
                expected={"ran_audit": scenario.ran_audit, "reason": scenario.reason_code},
                got={
                    "ran_audit": outcome.ran_audit,
                    "reason": outcome.reason_code,
                    "facts_provider": outcome.facts_provider,
                    "audit_provider": outcome.audit_provider,
                },
                audit_ok=audit_ok,
                failed_checks=failed,
            )
        )
    return results


def _failed_audit_checks(audit: AuditReport | None, checks: tuple[AuditExpectation, ...]) -> list[str]:
    if audit is None:
        return [f"{check.section}.{check.kind}: no audit" for check in checks]
    sections = {section.key: section for section in audit.sections}
    failed: list[str] = []
    for check in checks:
        section = sections.get(check.section)
        entries: list[str] = list(getattr(section, check.kind, [])) if section is not None else []
        if not any(check.contains.lower() in entry.lower() for entry in entries):
            failed.append(f"{check.section}.{check.kind}: {check.contains}")
    return failed
