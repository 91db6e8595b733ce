from __future__ import annotations

"""
Deterministic rules-only audit report.

Design intent:
- Built purely from ExtractedFacts; no model involvement.
- Findings are literal facts; missing entries are explicit absences only.
- Schema-valid by construction, so it is always a safe substitute.
"""

from typing import Optional

from medops.internal_core.contracts import (
    AUDIT_SECTION_KEYS,
    AUDIT_SECTION_TITLES,
    AuditMeta,
    AuditReport,
    AuditSection,
    ExtractedFacts,
)
from medops.internal_core.store import utc_now_iso

FALLBACK_REPORT_VERSION = "audit_rules_v1"
FALLBACK_REPORT_NOTE = "rules-only report; literal facts and documentation gaps only; no inference or clinical advice"


def build_fallback_report(facts: ExtractedFacts, *, generated_at: Optional[str] = None) -> AuditReport:
    findings: dict[str, list[str]] = {key: [] for key in AUDIT_SECTION_KEYS}
    missing: dict[str, list[str]] = {key: [] for key in AUDIT_SECTION_KEYS}
    vitals = facts.vitals

    spo2_initial = vitals.spo2_initial if vitals else None
    spo2_on_o2 = vitals.spo2_on_o2 if vitals else None
    if spo2_initial is not None:
        findings["B"].append(f"SpO2 initial: {_num(spo2_initial)}%")
    if spo2_on_o2 is not None:
        findings["B"].append(f"SpO2 on O2: {_num(spo2_on_o2)}%")
    if spo2_initial is None and spo2_on_o2 is None:
        missing["B"].append("SpO2 not documented")
    _vital_line(findings["B"], missing["B"], "RR", vitals.rr if vitals else None, " irpm")

    therapy = facts.oxygen_therapy
    if therapy is not None:
        parts = []
        if therapy.device:
            parts.append(therapy.device)
        if therapy.flow_l_min is not None:
            parts.append(f"{_num(therapy.flow_l_min)} L/min")
        findings["B"].append("oxygen therapy: " + " ".join(parts))
        if therapy.flow_l_min is None:
            missing["B"].append("oxygen flow not documented")

    _vital_line(findings["C"], missing["C"], "HR", vitals.hr if vitals else None, " bpm")
    systolic = vitals.bp_systolic if vitals else None
    diastolic = vitals.bp_diastolic if vitals else None
    if systolic is not None and diastolic is not None:
        findings["C"].append(f"BP: {_num(systolic)}x{_num(diastolic)} mmHg")
    elif systolic is not None:
        findings["C"].append(f"BP systolic: {_num(systolic)} mmHg")
        missing["C"].append("BP diastolic not documented")
    else:
        missing["C"].append("BP not documented")

    _vital_line(findings["E"], missing["E"], "temperature", vitals.temp if vitals else None, " °C")
    for item in facts.physical_exam:
        findings["E"].append(f"exam: {item}")

    for lab in facts.labs:
        if lab.status == "done" and lab.result:
            findings["F"].append(f"{lab.test}: {lab.result}")
        elif lab.status == "done":
            findings["F"].append(f"{lab.test}: done")
            missing["F"].append(f"{lab.test} result not documented")
        elif lab.status == "pending":
            findings["F"].append(f"{lab.test}: pending")
            missing["J"].append(f"{lab.test} result pending")
        else:
            findings["F"].append(f"{lab.test}: not done")
    for exam in facts.pending_exams:
        findings["F"].append(f"pending exam: {exam}")

    for med in facts.medications:
        findings["G"].append(f"medication: {med}")

    problem = facts.presenting_problem
    if problem is not None and problem.chief_complaint:
        findings["I"].append(f"chief complaint: {problem.chief_complaint}")
    else:
        missing["I"].append("chief complaint not documented")
    if problem is not None:
        if problem.duration:
            findings["I"].append(f"duration: {problem.duration}")
        if problem.onset:
            findings["I"].append(f"onset: {problem.onset}")
        for symptom in problem.associated_symptoms:
            findings["I"].append(f"associated symptom: {symptom}")
    for item in facts.comorbidities:
        findings["I"].append(f"comorbidity: {item}")

    findings["K"].extend(facts.uncertainties)

    sections = [
        AuditSection(
            key=key,
            title=AUDIT_SECTION_TITLES[key],
            findings=_dedupe(findings[key]),
            missing=[item for item in _dedupe(missing[key]) if item.lower() not in {f.lower() for f in findings[key]}],
        )
        for key in AUDIT_SECTION_KEYS
    ]
    return AuditReport(
        version=FALLBACK_REPORT_VERSION,
        sections=sections,
        meta=AuditMeta(generated_at=generated_at or utc_now_iso(), note=FALLBACK_REPORT_NOTE),
    )


def _vital_line(findings: list[str], missing: list[str], name: str, value: float | None, unit: str) -> None:
    if value is None:
        missing.append(f"{name} not documented")
        return
    findings.append(f"{name}: {_num(value)}{unit}")


def _num(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        key = item.strip().lower()
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(item.strip())
    return out
