from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr

FACTS_SCHEMA_VERSION = "extracted_facts_v1"
GATE_REASON_VOCABULARY_VERSION = "gate_reasons_v1"

LabStatus = Literal["done", "pending", "not_done"]


class FactsMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str = FACTS_SCHEMA_VERSION
    language: str = "pt-BR"
    source: str = "raw_text"


class PatientInfo(BaseModel):
    model_config = ConfigDict(extra="forbid")

    age: Optional[int] = None
    sex: Optional[str] = None


class PresentingProblem(BaseModel):
    model_config = ConfigDict(extra="forbid")

    chief_complaint: Optional[str] = None
    duration: Optional[str] = None
    onset: Optional[str] = None
    associated_symptoms: List[str] = Field(default_factory=list)


class Vitals(BaseModel):
    model_config = ConfigDict(extra="forbid")

    spo2_initial: Optional[float] = None
    spo2_on_o2: Optional[float] = None
    hr: Optional[float] = None
    bp_systolic: Optional[float] = None
    bp_diastolic: Optional[float] = None
    temp: Optional[float] = None
    rr: Optional[float] = None


class OxygenTherapy(BaseModel):
    model_config = ConfigDict(extra="forbid")

    device: Optional[str] = None
    flow_l_min: Optional[float] = None


class LabResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    test: str
    result: Optional[str] = None
    status: LabStatus = "done"


class ExtractedFacts(BaseModel):
    model_config = ConfigDict(extra="forbid")

    meta: FactsMeta = Field(default_factory=FactsMeta)
    patient: Optional[PatientInfo] = None
    presenting_problem: Optional[PresentingProblem] = None
    comorbidities: List[str] = Field(default_factory=list)
    physical_exam: List[str] = Field(default_factory=list)
    vitals: Optional[Vitals] = None
    oxygen_therapy: Optional[OxygenTherapy] = None
    medications: List[str] = Field(default_factory=list)
    labs: List[LabResult] = Field(default_factory=list)
    pending_exams: List[str] = Field(default_factory=list)
    uncertainties: List[str] = Field(default_factory=list)


AUDIT_SECTION_KEYS: tuple[str, ...] = ("A", "B", "C", "D", "E", "F", "G", "H", "I", "J", "K")

AUDIT_SECTION_TITLES: Dict[str, str] = {
    "A": "Airway",
    "B": "Breathing",
    "C": "Circulation",
    "D": "Disability",
    "E": "Exposure",
    "F": "Labs/Imaging",
    "G": "Medications",
    "H": "Allergies",
    "I": "Problem List",
    "J": "Plan/Next Steps (documentation gaps only)",
    "K": "Safety/Uncertainties",
}

SAFETY_SECTION_KEY = "K"


class AuditSection(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: StrictStr
    title: StrictStr
    findings: List[StrictStr] = Field(default_factory=list)
    missing: List[StrictStr] = Field(default_factory=list)


class AuditMeta(BaseModel):
    model_config = ConfigDict(extra="forbid")

    generated_at: StrictStr
    note: StrictStr = ""


class AuditReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: StrictStr
    sections: List[AuditSection]
    meta: AuditMeta


FactsProvider = Literal["rules", "medgemma", "rules_fallback"]
AuditProvider = Literal["rules_patched", "medgemma_patched", "rules_fallback_patched"]


class GatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    run_audit: bool
    reason_code: str
    vocabulary_version: str = GATE_REASON_VOCABULARY_VERSION


class CaseRecord(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    created_at: str
    raw_text: str
    facts: ExtractedFacts
    gate: GatePayload
    audit: Optional[AuditReport] = None
    facts_provider: FactsProvider
    facts_error: Optional[str] = None
    audit_provider: Optional[AuditProvider] = None
    audit_error: Optional[str] = None
    debug: Dict[str, Any] = Field(default_factory=dict)
