from __future__ import annotations

"""
Normalize extraction output before it reaches the gate.

Design intent:
- Work on a copy; the extraction payload is never mutated.
- Reconcile only literal numbers from the note (no inference).
- Always finish with the anti-evasion enforcement so the ledger is complete.
"""

from dataclasses import dataclass, field
from typing import Any, Mapping

from medops.facts.coercion import coerce_extracted_facts, vitals_is_empty
from medops.internal_core.contracts import ExtractedFacts, OxygenTherapy, Vitals
from medops.safety.anti_evasion import EnforcementResult, enforce_uncertainties
from medops.utils.clinical_text import (
    VITAL_FIELDS,
    VitalReading,
    find_oxygen_device,
    find_oxygen_flow,
    find_vital_readings,
)


@dataclass(frozen=True)
class NormalizationResult:
    facts: ExtractedFacts
    enforcement: EnforcementResult
    repairs: list[str] = field(default_factory=list)


def normalize_facts(payload: Any, raw_text: str) -> NormalizationResult:
    facts, repairs = coerce_extracted_facts(payload)
    text = str(raw_text or "")
    readings = find_vital_readings(text)

    vitals = reconcile_vitals(facts.vitals, readings, repairs)
    oxygen_therapy = _reconcile_oxygen_therapy(facts.oxygen_therapy, text, repairs)

    if isinstance(payload, ExtractedFacts):
        existing_uncertainties: Any = list(payload.uncertainties)
    elif isinstance(payload, Mapping):
        existing_uncertainties = payload.get("uncertainties")
    else:
        existing_uncertainties = None

    enforcement = enforce_uncertainties(
        {"uncertainties": existing_uncertainties, "vitals": vitals},
        text,
    )
    normalized = facts.model_copy(
        update={
            "vitals": vitals,
            "oxygen_therapy": oxygen_therapy,
            "uncertainties": list(enforcement.ledger),
        },
        deep=True,
    )
    return NormalizationResult(facts=normalized, enforcement=enforcement, repairs=repairs)


def reconcile_vitals(
    vitals: Vitals | None,
    readings: list[VitalReading],
    repairs: list[str],
) -> Vitals | None:
    fields: dict[str, float | None] = (
        vitals.model_dump() if vitals is not None else {name: None for name in VITAL_FIELDS}
    )

    spo2_readings = [item for item in readings if item.vital == "spo2"]
    room_air = [item.value for item in spo2_readings if not item.on_o2]
    on_o2 = [item.value for item in spo2_readings if item.on_o2]

    # Extractor put a room-air reading into the on-O2 slot.
    moved = fields["spo2_on_o2"]
    if (
        moved is not None
        and fields["spo2_initial"] is None
        and moved in room_air
        and moved not in on_o2
    ):
        fields["spo2_initial"] = moved
        fields["spo2_on_o2"] = None
        repairs.append("spo2_on_o2_remapped_to_initial")

    if fields["spo2_initial"] is None and room_air:
        fields["spo2_initial"] = room_air[0]
        repairs.append("spo2_initial_from_text")
    if fields["spo2_on_o2"] is None and on_o2:
        fields["spo2_on_o2"] = on_o2[0]
        repairs.append("spo2_on_o2_from_text")

    bp = next((item for item in readings if item.vital == "bp"), None)
    if bp is not None and fields["bp_systolic"] is None and fields["bp_diastolic"] is None:
        fields["bp_systolic"] = bp.value
        fields["bp_diastolic"] = bp.secondary
        repairs.append("bp_from_text")

    for vital in ("hr", "rr", "temp"):
        reading = next((item for item in readings if item.vital == vital), None)
        if reading is not None and fields[vital] is None:
            fields[vital] = reading.value
            repairs.append(f"{vital}_from_text")

    reconciled = Vitals(**fields)
    if vitals_is_empty(reconciled):
        return None
    return reconciled


def _reconcile_oxygen_therapy(
    therapy: OxygenTherapy | None,
    raw_text: str,
    repairs: list[str],
) -> OxygenTherapy | None:
    device = therapy.device if therapy is not None else None
    flow = therapy.flow_l_min if therapy is not None else None

    if flow is None:
        flow = find_oxygen_flow(raw_text)
        if flow is not None:
            repairs.append("oxygen_flow_from_text")
    if device is None:
        device = find_oxygen_device(raw_text)
        if device is not None:
            repairs.append("oxygen_device_from_text")

    if device is None and flow is None:
        return None
    return OxygenTherapy(device=device, flow_l_min=flow)
