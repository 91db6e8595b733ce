from __future__ import annotations

"""
HTTP surface for medops case ingest and retrieval.

Design intent:
- Keep API orchestration thin and typed.
- Delegate domain logic to the cases/facts/risk/audit modules.
- Lazily build shared state on `app.state` so tests can inject fakes.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from medops.cases.orchestrator import CaseInputError, ingest_case
from medops.cases.smoke import run_smoke_scenarios
from medops.internal_core.config import ServiceConfig, load_config
from medops.internal_core.contracts import CaseRecord
from medops.internal_core.store import InMemoryCaseStore
from medops.note.summary import render_case_summary


class CaseIngestRequest(BaseModel):
    raw_text: str = Field(min_length=1)


class CaseIngestData(BaseModel):
    case_id: str
    ran_audit: bool
    reason: str
    facts_provider: str
    audit_provider: Optional[str] = None


class CaseIngestResponse(BaseModel):
    success: bool = True
    data: CaseIngestData
    message: str = ""


class WipeResponse(BaseModel):
    success: bool = True
    removed: int = Field(ge=0)


class CaseListResponse(BaseModel):
    success: bool = True
    case_ids: list[str]


class SmokeScenarioResult(BaseModel):
    name: str
    ok: bool
    expected: dict[str, Any]
    got: dict[str, Any]
    audit_ok: Optional[bool] = None
    failed_checks: list[str] = Field(default_factory=list)


class SmokeData(BaseModel):
    all_ok: bool
    results: list[SmokeScenarioResult]


class SmokeResponse(BaseModel):
    success: bool
    data: SmokeData
    message: str = ""


app = FastAPI(title="medops service")
logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _get_config() -> ServiceConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, ServiceConfig):
        return existing
    created = load_config()
    logging.getLogger("medops").setLevel(created.MEDOPS_LOG_LEVEL)
    setattr(app.state, "config", created)
    return created


def _get_case_store() -> InMemoryCaseStore:
    existing = getattr(app.state, "case_store", None)
    if isinstance(existing, InMemoryCaseStore):
        return existing
    created = InMemoryCaseStore()
    setattr(app.state, "case_store", created)
    return created


def _get_case_or_404(case_id: str) -> CaseRecord:
    normalized = str(case_id or "").strip()
    if not normalized:
        raise HTTPException(status_code=400, detail="case_id is required.")
    record = _get_case_store().get_case(normalized)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Case not found: {normalized}")
    return record


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/cases/ingest", response_model=CaseIngestResponse)
def cases_ingest(payload: CaseIngestRequest) -> CaseIngestResponse:
    try:
        result = ingest_case(
            payload.raw_text,
            store=_get_case_store(),
            config=_get_config(),
            extract_fn=getattr(app.state, "facts_extract_callable", None),
            generate_fn=getattr(app.state, "audit_generate_callable", None),
        )
    except CaseInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    message = "case audited" if result.ran_audit else "case skipped by gate"
    return CaseIngestResponse(
        data=CaseIngestData(
            case_id=result.case_id,
            ran_audit=result.ran_audit,
            reason=result.reason_code,
            facts_provider=result.facts_provider,
            audit_provider=result.audit_provider,
        ),
        message=message,
    )


@app.get("/cases", response_model=CaseListResponse)
async def cases_list() -> CaseListResponse:
    return CaseListResponse(case_ids=_get_case_store().list_case_ids())


@app.get("/cases/{case_id}")
async def cases_get(case_id: str) -> dict[str, Any]:
    return _get_case_or_404(case_id).model_dump()


@app.get("/cases/{case_id}/summary", response_class=PlainTextResponse)
async def cases_summary(case_id: str) -> str:
    return render_case_summary(_get_case_or_404(case_id))


@app.post("/admin/wipe", response_model=WipeResponse)
async def admin_wipe() -> WipeResponse:
    removed = _get_case_store().wipe()
    logger.info("case store wiped (%d cases removed)", removed)
    return WipeResponse(removed=removed)


@app.post("/smoke", response_model=SmokeResponse)
def smoke() -> SmokeResponse:
    results = run_smoke_scenarios(
        config=_get_config(),
        extract_fn=getattr(app.state, "facts_extract_callable", None),
        generate_fn=getattr(app.state, "audit_generate_callable", None),
    )
    all_ok = all(item.ok for item in results)
    if not all_ok:
        logger.warning("smoke scenarios failed: %s", [item.name for item in results if not item.ok])
    return SmokeResponse(
        success=all_ok,
        data=SmokeData(
            all_ok=all_ok,
            results=[
                SmokeScenarioResult(
                    name=item.name,
                    ok=item.ok,
                    expected=item.expected,
                    got=item.got,
                    audit_ok=item.audit_ok,
                    failed_checks=item.failed_checks,
                )
                for item in results
            ],
        ),
        message="ok" if all_ok else "failed",
    )
