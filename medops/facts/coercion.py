from __future__ import annotations

"""
Tolerant coercion of extraction output into ExtractedFacts.

Extraction output is untrusted: keys go missing, lists arrive as strings,
numbers arrive as text. Unusable values are dropped and reported as repairs;
nothing here raises.
"""

import math
from typing import Any, Mapping

from medops.internal_core.contracts import (
    ExtractedFacts,
    FactsMeta,
    LabResult,
    OxygenTherapy,
    PatientInfo,
    PresentingProblem,
    Vitals,
)
from medops.utils.clinical_text import VITAL_FIELDS

ALLOWED_LAB_STATUS: set[str] = {"done", "pending", "not_done"}

_KNOWN_KEYS: set[str] = {
    "meta",
    "patient",
    "presenting_problem",
    "comorbidities",
    "physical_exam",
    "vitals",
    "oxygen_therapy",
    "medications",
    "labs",
    "pending_exams",
    "uncertainties",
}


def coerce_extracted_facts(payload: Any) -> tuple[ExtractedFacts, list[str]]:
    repairs: list[str] = []
    if isinstance(payload, ExtractedFacts):
        payload = payload.model_dump()
    if not isinstance(payload, Mapping):
        return ExtractedFacts(), ["facts_payload_not_object"]

    unknown = sorted(str(key) for key in payload.keys() if key not in _KNOWN_KEYS)
    if unknown:
        repairs.append("unknown_keys_dropped:" + ",".join(unknown))

    facts = ExtractedFacts(
        meta=_coerce_meta(payload.get("meta"), repairs),
        patient=_coerce_patient(payload.get("patient"), repairs),
        presenting_problem=_coerce_presenting_problem(payload.get("presenting_problem"), repairs),
        comorbidities=_coerce_text_list(payload.get("comorbidities"), "comorbidities", repairs),
        physical_exam=_coerce_text_list(payload.get("physical_exam"), "physical_exam", repairs),
        vitals=_coerce_vitals(payload.get("vitals"), repairs),
        oxygen_therapy=_coerce_oxygen_therapy(payload.get("oxygen_therapy"), repairs),
        medications=_coerce_text_list(payload.get("medications"), "medications", repairs),
        labs=_coerce_labs(payload.get("labs"), repairs),
        pending_exams=_coerce_text_list(payload.get("pending_exams"), "pending_exams", repairs),
        uncertainties=[
            item.strip()
            for item in (payload.get("uncertainties") or [])
            if isinstance(item, str) and item.strip()
        ]
        if isinstance(payload.get("uncertainties"), list)
        else [],
    )
    return facts, repairs


def vitals_is_empty(vitals: Vitals | None) -> bool:
    if vitals is None:
        return True
    return all(getattr(vitals, name) is None for name in VITAL_FIELDS)


def _coerce_meta(value: Any, repairs: list[str]) -> FactsMeta:
    if not isinstance(value, Mapping):
        if value is not None:
            repairs.append("meta_not_object")
        return FactsMeta()
    defaults = FactsMeta()
    return FactsMeta(
        schema_version=_opt_text(value.get("schema_version")) or defaults.schema_version,
        language=_opt_text(value.get("language")) or defaults.language,
        source=_opt_text(value.get("source")) or defaults.source,
    )


def _coerce_patient(value: Any, repairs: list[str]) -> PatientInfo | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        repairs.append("patient_not_object")
        return None
    age = _opt_number(value.get("age"))
    patient = PatientInfo(
        age=int(age) if age is not None and 0 <= age < 150 else None,
        sex=_opt_text(value.get("sex")),
    )
    if patient.age is None and patient.sex is None:
        repairs.append("patient_empty_collapsed")
        return None
    return patient


def _coerce_presenting_problem(value: Any, repairs: list[str]) -> PresentingProblem | None:
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        repairs.append("presenting_problem_string_wrapped")
        return PresentingProblem(chief_complaint=text)
    if not isinstance(value, Mapping):
        repairs.append("presenting_problem_not_object")
        return None
    problem = PresentingProblem(
        chief_complaint=_opt_text(value.get("chief_complaint")),
        duration=_opt_text(value.get("duration")),
        onset=_opt_text(value.get("onset")),
        associated_symptoms=_coerce_text_list(
            value.get("associated_symptoms"), "associated_symptoms", repairs
        ),
    )
    if (
        problem.chief_complaint is None
        and problem.duration is None
        and problem.onset is None
        and not problem.associated_symptoms
    ):
        repairs.append("presenting_problem_empty_collapsed")
        return None
    return problem


def _coerce_vitals(value: Any, repairs: list[str]) -> Vitals | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        repairs.append("vitals_not_object")
        return None
    fields: dict[str, float | None] = {name: _opt_number(value.get(name)) for name in VITAL_FIELDS}
    legacy = _opt_number(value.get("spo2"))
    if legacy is not None and fields["spo2_initial"] is None:
        fields["spo2_initial"] = legacy
        repairs.append("vitals_spo2_legacy_key_mapped")
    vitals = Vitals(**fields)
    if vitals_is_empty(vitals):
        repairs.append("vitals_empty_collapsed")
        return None
    return vitals


def _coerce_oxygen_therapy(value: Any, repairs: list[str]) -> OxygenTherapy | None:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        repairs.append("oxygen_therapy_not_object")
        return None
    flow = _opt_number(value.get("flow_l_min"))
    if flow is None:
        flow = _opt_number(value.get("flow"))
    therapy = OxygenTherapy(device=_opt_text(value.get("device")), flow_l_min=flow)
    if therapy.device is None and therapy.flow_l_min is None:
        repairs.append("oxygen_therapy_empty_collapsed")
        return None
    return therapy


def _coerce_labs(value: Any, repairs: list[str]) -> list[LabResult]:
    if value is None:
        return []
    if not isinstance(value, list):
        repairs.append("labs_not_list")
        return []
    out: list[LabResult] = []
    for item in value:
        if not isinstance(item, Mapping):
            repairs.append("lab_item_dropped")
            continue
        test = _opt_text(item.get("test")) or _opt_text(item.get("name"))
        if not test:
            repairs.append("lab_item_dropped")
            continue
        result = _opt_text(item.get("result"))
        status = str(item.get("status") or "").strip().lower()
        if status not in ALLOWED_LAB_STATUS:
            status = "done" if result else "pending"
            repairs.append("lab_status_coerced")
        out.append(LabResult(test=test, result=result, status=status))  # type: ignore[arg-type]
    return out


def _coerce_text_list(value: Any, name: str, repairs: list[str]) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        text = value.strip()
        if text:
            repairs.append(f"{name}_string_wrapped")
            return [text]
        return []
    if not isinstance(value, list):
        repairs.append(f"{name}_not_list")
        return []
    out: list[str] = []
    for item in value:
        text = _text_item(item)
        if text and text not in out:
            out.append(text)
    return out


def _text_item(item: Any) -> str:
    if item is None or isinstance(item, bool):
        return ""
    if isinstance(item, str):
        return item.strip()
    if isinstance(item, (int, float)):
        return str(item)
    if isinstance(item, Mapping):
        for key in ("name", "text", "value", "test"):
            text = _opt_text(item.get(key))
            if text:
                return text
        return " | ".join(f"{k}: {v}" for k, v in item.items() if v is not None).strip()
    return str(item).strip()


def _opt_text(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _opt_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        raw = str(value).strip().replace(",", ".").rstrip("%").strip()
        if not raw:
            return None
        try:
            number = float(raw)
        except ValueError:
            return None
    if not math.isfinite(number):
        return None
    return number
