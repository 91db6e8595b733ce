from __future__ import annotations

from typing import List

from medops.internal_core.contracts import SAFETY_SECTION_KEY, CaseRecord
from medops.safety.anti_evasion import parse_uncertainty


def split_uncertainty(entry: str) -> str:
    label, quote = parse_uncertainty(entry)
    if not label:
        return quote
    return f'{label} — "{quote}"'


def render_case_summary(record: CaseRecord) -> str:
    """Plain-text case summary: gate header, then non-empty audit sections."""
    lines: List[str] = [
        "# Gate",
        f"run_audit={str(record.gate.run_audit).lower()} | reason={record.gate.reason_code}",
        f"facts_provider={record.facts_provider} | audit_provider={record.audit_provider or 'none'}",
        "",
    ]

    if record.audit is None:
        lines.append("No audit sections to render.")
        return "\n".join(lines) + "\n"

    rendered = 0
    for section in record.audit.sections:
        if not section.findings and not section.missing:
            continue
        rendered += 1
        lines.append(f"## {section.key} — {section.title}")
        if section.findings:
            lines.append("Findings:")
            for item in section.findings:
                text = split_uncertainty(item) if section.key == SAFETY_SECTION_KEY else item
                lines.append(f"- {text}")
        if section.missing:
            lines.append("Missing:")
            lines.extend(f"- {item}" for item in section.missing)
        lines.append("")

    if not rendered:
        lines.append("No audit sections to render.")
    return "\n".join(lines).rstrip("\n") + "\n"
