from __future__ import annotations

"""
Strict audit validation and safety-section enforcement.

Design intent:
- Validation is a tagged result; callers branch on it instead of catching.
- No partial acceptance and no shape coercion of generated drafts.
- Every patch works on a copy and is idempotent.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from pydantic import ValidationError

from medops.internal_core.contracts import (
    AUDIT_SECTION_KEYS,
    AUDIT_SECTION_TITLES,
    SAFETY_SECTION_KEY,
    AuditReport,
    AuditSection,
    ExtractedFacts,
)
from medops.risk.gate import HYPOXEMIA_SPO2_THRESHOLD, GateDecision, ReasonCode

REVIEW_REQUIRED_NOTE = "uncertainty gate: source text has unsupported or hedged statements (review required)"
SPO2_TARGET_GAP = "SpO2 target not documented"


@dataclass(frozen=True)
class AuditValidation:
    report: AuditReport | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.report is not None


def validate_audit_draft(draft: Any) -> AuditValidation:
    if isinstance(draft, AuditReport):
        draft = draft.model_dump()
    if not isinstance(draft, Mapping):
        return AuditValidation(error="audit_not_object")

    try:
        report = AuditReport.model_validate(draft)
    except ValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        loc = ".".join(str(part) for part in first.get("loc", ()))
        return AuditValidation(error=f"audit_schema_invalid: {loc}: {first.get('msg', 'invalid')}")

    if not report.version.strip():
        return AuditValidation(error="audit_version_empty")
    if not _is_iso_timestamp(report.meta.generated_at):
        return AuditValidation(error="audit_generated_at_not_iso")

    keys = [section.key for section in report.sections]
    if len(keys) != len(AUDIT_SECTION_KEYS):
        return AuditValidation(error=f"audit_section_count:{len(keys)}")
    duplicates = sorted({key for key in keys if keys.count(key) > 1})
    if duplicates:
        return AuditValidation(error="audit_section_duplicate:" + ",".join(duplicates))
    if tuple(keys) != AUDIT_SECTION_KEYS:
        return AuditValidation(error="audit_section_keys_invalid:" + ",".join(keys))

    for section in report.sections:
        if not section.title.strip():
            return AuditValidation(error=f"audit_section_title_empty:{section.key}")
        if _overlap(section.findings, section.missing):
            return AuditValidation(error=f"audit_findings_missing_overlap:{section.key}")

    return AuditValidation(report=report)


def inject_uncertainties(report: AuditReport, ledger: Sequence[str]) -> AuditReport:
    """
    Force every ledger entry into the safety section's findings.

    The section is created when absent. An entry the generator listed under
    missing is moved to findings so the two lists stay disjoint.
    """
    out = report.model_copy(deep=True)
    safety = _find_section(out, SAFETY_SECTION_KEY)
    if safety is None:
        safety = _empty_section(SAFETY_SECTION_KEY)
        out.sections.append(safety)

    for entry in ledger:
        text = str(entry or "").strip()
        if not text:
            continue
        key = text.lower()
        if key not in {item.strip().lower() for item in safety.findings}:
            safety.findings.append(text)
        safety.missing = [item for item in safety.missing if item.strip().lower() != key]
    return out


def apply_documentation_minimums(
    report: AuditReport,
    facts: ExtractedFacts,
    gate: GateDecision,
) -> AuditReport:
    """Hard-risk documentation minimums, added regardless of the generator."""
    out = report.model_copy(deep=True)
    vitals = facts.vitals
    spo2 = vitals.spo2_initial if vitals is not None else None

    breathing = _find_section(out, "B")
    if breathing is not None and spo2 is not None and spo2 < HYPOXEMIA_SPO2_THRESHOLD:
        if not any("spo2" in item.lower() for item in breathing.findings):
            _push_finding(breathing, f"SpO2 initial: {_format_number(spo2)}%")
        if vitals is None or vitals.rr is None:
            _push_missing(breathing, "RR not documented")
        if facts.oxygen_therapy is None:
            _push_missing(breathing, "oxygen therapy status not documented")
        _push_missing(breathing, SPO2_TARGET_GAP)

    problems = _find_section(out, "I")
    complaint = facts.presenting_problem.chief_complaint if facts.presenting_problem else None
    if problems is not None and complaint:
        _push_finding(problems, f"chief complaint: {complaint}")

    safety = _find_section(out, SAFETY_SECTION_KEY)
    if safety is not None and gate.reason_code is ReasonCode.UNCERTAINTY:
        _push_missing(safety, REVIEW_REQUIRED_NOTE)
    return out


def _is_iso_timestamp(value: str) -> bool:
    text = value.strip()
    if not text:
        return False
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def _overlap(findings: Iterable[str], missing: Iterable[str]) -> bool:
    left = {item.strip().lower() for item in findings}
    return any(item.strip().lower() in left for item in missing)


def _find_section(report: AuditReport, key: str) -> AuditSection | None:
    for section in report.sections:
        if section.key == key:
            return section
    return None


def _empty_section(key: str) -> AuditSection:
    return AuditSection(key=key, title=AUDIT_SECTION_TITLES[key], findings=[], missing=[])


def _push_finding(section: AuditSection, text: str) -> None:
    key = text.strip().lower()
    if key in {item.strip().lower() for item in section.missing}:
        return
    if key not in {item.strip().lower() for item in section.findings}:
        section.findings.append(text)


def _push_missing(section: AuditSection, text: str) -> None:
    key = text.strip().lower()
    if key in {item.strip().lower() for item in section.findings}:
        return
    if key not in {item.strip().lower() for item in section.missing}:
        section.missing.append(text)


def _format_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)
