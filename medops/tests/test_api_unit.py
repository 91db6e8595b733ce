from typing import Any

from fastapi.testclient import TestClient

from medops.api.main import app
from medops.internal_core.config import ServiceConfig
from medops.internal_core.store import InMemoryCaseStore


def _config(**overrides: Any) -> ServiceConfig:
    values: dict[str, Any] = {
        "MEDOPS_FACTS_PROVIDER": "rules",
        "MEDOPS_AUDIT_PROVIDER": "rules",
        "MEDOPS_MEDGEMMA_GGUF": "",
        "MEDOPS_LLM_CHAT_FORMAT": "gemma",
        "MEDOPS_LLM_MAX_TOKENS": 256,
        "MEDOPS_LLM_N_CTX": 2048,
        "MEDOPS_LLM_N_GPU_LAYERS": 0,
        "MEDOPS_LLM_N_THREADS": None,
        "MEDOPS_SERVICE_TIMEOUT_SEC": 5.0,
        "MEDOPS_MIN_RAW_TEXT_CHARS": 10,
        "MEDOPS_LOG_LEVEL": "INFO",
        "MEDOPS_LLM_DEBUG_LOG": "",
    }
    values.update(overrides)
    return ServiceConfig(**values)


def _fresh_client(**overrides: Any) -> TestClient:
    app.state.case_store = InMemoryCaseStore()
    app.state.config = _config(**overrides)
    return TestClient(app)


def _clear_injected_service_callables() -> None:
    if hasattr(app.state, "facts_extract_callable"):
        delattr(app.state, "facts_extract_callable")
    if hasattr(app.state, "audit_generate_callable"):
        delattr(app.state, "audit_generate_callable")


def test_healthz() -> None:
    client = _fresh_client()
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_ingest_get_and_summary_round_trip() -> None:
    client = _fresh_client()
    response = client.post("/cases/ingest", json={"raw_text": "Sat 89% em ar ambiente. Dispneia."})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["ran_audit"] is True
    assert body["data"]["reason"] == "hard-risk-hypoxemia"
    assert body["data"]["facts_provider"] == "rules"
    assert body["data"]["audit_provider"] == "rules_patched"
    case_id = body["data"]["case_id"]

    record = client.get(f"/cases/{case_id}")
    assert record.status_code == 200
    payload = record.json()
    assert payload["id"] == case_id
    assert payload["gate"] == {
        "run_audit": True,
        "reason_code": "hard-risk-hypoxemia",
        "vocabulary_version": "gate_reasons_v1",
    }
    assert payload["facts"]["vitals"]["spo2_initial"] == 89.0
    assert len(payload["audit"]["sections"]) == 11

    summary = client.get(f"/cases/{case_id}/summary")
    assert summary.status_code == 200
    assert summary.headers["content-type"].startswith("text/plain")
    text = summary.text
    assert text.startswith("# Gate\nrun_audit=true | reason=hard-risk-hypoxemia\n")
    assert "## B — Breathing" in text
    assert "- SpO2 initial: 89%" in text
    assert "Missing:\n- RR not documented" in text


def test_skipped_case_summary_has_no_sections() -> None:
    client = _fresh_client()
    body = client.post("/cases/ingest", json={"raw_text": "Tosse leve, exame ok."}).json()
    assert body["data"]["ran_audit"] is False
    assert body["data"]["audit_provider"] is None

    summary = client.get(f"/cases/{body['data']['case_id']}/summary").text
    assert "run_audit=false | reason=skip-safe-case" in summary
    assert "No audit sections to render." in summary


def test_ingest_rejects_short_text_with_422() -> None:
    client = _fresh_client()
    response = client.post("/cases/ingest", json={"raw_text": "curto"})
    assert response.status_code == 422
    assert "at least 10" in response.json()["detail"]


def test_ingest_rejects_missing_raw_text() -> None:
    client = _fresh_client()
    assert client.post("/cases/ingest", json={}).status_code == 422


def test_unknown_case_returns_404() -> None:
    client = _fresh_client()
    assert client.get("/cases/case_missing").status_code == 404
    assert client.get("/cases/case_missing/summary").status_code == 404


def test_wipe_clears_store() -> None:
    client = _fresh_client()
    case_id = client.post("/cases/ingest", json={"raw_text": "Tosse leve, exame ok."}).json()["data"]["case_id"]
    response = client.post("/admin/wipe")
    assert response.status_code == 200
    assert response.json() == {"success": True, "removed": 1}
    assert client.get(f"/cases/{case_id}").status_code == 404


def test_injected_extraction_failure_is_recorded_as_fallback() -> None:
    def failing_extract(text: str) -> Any:
        raise RuntimeError("extraction service down")

    client = _fresh_client(MEDOPS_FACTS_PROVIDER="medgemma")
    app.state.facts_extract_callable = failing_extract
    try:
        body = client.post("/cases/ingest", json={"raw_text": "Paciente confuso desde ontem."}).json()
    finally:
        _clear_injected_service_callables()

    assert body["data"]["facts_provider"] == "rules_fallback"
    assert body["data"]["reason"] == "hard-risk-neuro-change"
    record = client.get(f"/cases/{body['data']['case_id']}").json()
    assert "extraction service down" in record["facts_error"]


def test_injected_audit_generator_is_used() -> None:
    def broken_generate(facts: Any, text: str) -> Any:
        return {"version": "x"}

    client = _fresh_client(MEDOPS_AUDIT_PROVIDER="medgemma")
    app.state.audit_generate_callable = broken_generate
    try:
        body = client.post("/cases/ingest", json={"raw_text": "Situação crítica, iniciei antibiótico."}).json()
    finally:
        _clear_injected_service_callables()

    assert body["data"]["reason"] == "uncertainty"
    assert body["data"]["audit_provider"] == "rules_fallback_patched"
    summary = client.get(f"/cases/{body['data']['case_id']}/summary").text
    assert '- Gravidade afirmada sem dados objetivos — "Situação crítica, iniciei antibiótico"' in summary


def test_list_cases_in_ingest_order() -> None:
    client = _fresh_client()
    first = client.post("/cases/ingest", json={"raw_text": "Tosse leve, exame ok."}).json()["data"]["case_id"]
    second = client.post("/cases/ingest", json={"raw_text": "Paciente confuso desde ontem."}).json()["data"]["case_id"]
    response = client.get("/cases")
    assert response.status_code == 200
    assert response.json() == {"success": True, "case_ids": [first, second]}


def test_smoke_route_runs_builtin_scenarios() -> None:
    client = _fresh_client()
    response = client.post("/smoke")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["message"] == "ok"
    assert body["data"]["all_ok"] is True
    by_name = {item["name"]: item for item in body["data"]["results"]}
    assert set(by_name) == {
        "hard_risk_spo2",
        "uncertainty_text",
        "safe_minimal",
        "neuro_change",
        "soft_risk_no_trigger",
    }
    assert by_name["hard_risk_spo2"]["audit_ok"] is True
    assert by_name["safe_minimal"]["audit_ok"] is None
    assert by_name["soft_risk_no_trigger"]["got"]["reason"] == "skip-safe-case"
    # Smoke cases stay out of the case store.
    assert client.get("/cases").json()["case_ids"] == []
