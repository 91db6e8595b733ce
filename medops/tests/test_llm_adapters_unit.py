import sys
from types import SimpleNamespace

import pytest

from medops.audit.medgemma_adapter import AuditGeneratorError, generate_audit_draft
from medops.facts.medgemma_adapter import FactsAdapterError, extract_facts_with_medgemma
from medops.internal_core.contracts import ExtractedFacts
from medops.utils.llm import extract_first_json_object, parse_json_object, resolve_model_path


def _model_file(tmp_path) -> str:
    model_path = tmp_path / "mock.gguf"
    model_path.write_text("x", encoding="utf-8")
    return str(model_path)


def test_facts_adapter_uses_chat_format_and_json_mode(monkeypatch, tmp_path) -> None:
    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            assert kwargs["chat_format"] == "gemma"
            assert kwargs["n_ctx"] == 2048

        def create_chat_completion(self, **kwargs):
            assert kwargs["response_format"] == {"type": "json_object"}
            assert kwargs["temperature"] == 0.0
            assert "Sat 89%" in kwargs["messages"][0]["content"]
            return {"choices": [{"message": {"content": '{"vitals": {"spo2_initial": 89}}'}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))

    result = extract_facts_with_medgemma(
        "Sat 89% em ar ambiente.",
        model_path=_model_file(tmp_path),
        n_ctx=2048,
        chat_format="gemma",
    )

    assert result.payload == {"vitals": {"spo2_initial": 89}}
    assert result.debug["chat_format"] == "gemma"
    assert result.debug["chat_format_applied"] is True
    assert result.debug["chat_format_compat_mode"] == "constructor_arg"
    assert result.debug["response_format_applied"] is True
    assert result.debug["response_format_compat_mode"] == "explicit_arg"


def test_facts_adapter_falls_back_when_chat_format_is_unsupported(monkeypatch, tmp_path) -> None:
    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            if "chat_format" in kwargs:
                raise TypeError("Llama.__init__() got an unexpected keyword argument 'chat_format'")

        def create_chat_completion(self, **kwargs):
            return {"choices": [{"message": {"content": "{}"}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))

    result = extract_facts_with_medgemma("Tosse leve, exame ok.", model_path=_model_file(tmp_path))

    assert result.payload == {}
    assert result.debug["chat_format_applied"] is False
    assert result.debug["chat_format_compat_mode"] == "constructor_omitted_unsupported"


def test_facts_adapter_retries_without_response_format(monkeypatch, tmp_path) -> None:
    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            self.calls = 0

        def create_chat_completion(self, **kwargs):
            self.calls += 1
            if "response_format" in kwargs:
                raise TypeError("create_chat_completion() got an unexpected keyword argument 'response_format'")
            return {"choices": [{"message": {"content": 'Resposta: {"medications": ["ceftriaxona"]} fim'}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))

    result = extract_facts_with_medgemma("Iniciada ceftriaxona.", model_path=_model_file(tmp_path))

    assert result.payload == {"medications": ["ceftriaxona"]}
    assert result.debug["response_format_applied"] is False
    assert result.debug["response_format_compat_mode"] == "omitted_unsupported"


def test_facts_adapter_raises_on_non_json_output(monkeypatch, tmp_path) -> None:
    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            pass

        def create_chat_completion(self, **kwargs):
            return {"choices": [{"message": {"content": "Não sei responder."}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))
    log_path = tmp_path / "llm.log"

    with pytest.raises(FactsAdapterError, match="non-JSON"):
        extract_facts_with_medgemma(
            "Tosse leve, exame ok.",
            model_path=_model_file(tmp_path),
            debug_log_path=str(log_path),
        )
    content = log_path.read_text(encoding="utf-8")
    assert "stage=facts_parse_error_invalid_json" in content
    assert "Não sei responder." in content


def test_facts_adapter_raises_when_model_file_is_missing(tmp_path) -> None:
    with pytest.raises(FactsAdapterError, match="not found"):
        extract_facts_with_medgemma("Tosse leve, exame ok.", model_path=str(tmp_path / "missing.gguf"))


def test_audit_adapter_returns_parsed_draft_and_logs(monkeypatch, tmp_path) -> None:
    seen: dict[str, str] = {}

    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            pass

        def create_chat_completion(self, **kwargs):
            seen["prompt"] = kwargs["messages"][0]["content"]
            return {"choices": [{"message": {"content": '{"version": "x", "sections": "oops"}'}}]}

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))
    log_path = tmp_path / "llm.log"

    result = generate_audit_draft(
        ExtractedFacts(uncertainties=['Gravidade subjetiva: "confia"']),
        "Paciente confia.",
        model_path=_model_file(tmp_path),
        debug_log_path=str(log_path),
    )

    assert result.draft == {"version": "x", "sections": "oops"}
    assert "Safety/Uncertainties" in seen["prompt"]
    assert "Gravidade subjetiva" in seen["prompt"]
    content = log_path.read_text(encoding="utf-8")
    assert "stage=audit_prompt_input" in content
    assert "stage=audit_inference_end" in content
    assert "stage=audit_raw_output" in content


def test_audit_adapter_raises_when_llama_cpp_is_unavailable(monkeypatch, tmp_path) -> None:
    monkeypatch.setitem(sys.modules, "llama_cpp", None)
    with pytest.raises(AuditGeneratorError, match="llama_cpp import failed"):
        generate_audit_draft(ExtractedFacts(), "Paciente confia.", model_path=_model_file(tmp_path))


def test_audit_adapter_wraps_inference_errors(monkeypatch, tmp_path) -> None:
    class FakeLlama:
        def __init__(self, **kwargs) -> None:
            pass

        def create_chat_completion(self, **kwargs):
            raise RuntimeError("CUDA out of memory")

    monkeypatch.setitem(sys.modules, "llama_cpp", SimpleNamespace(Llama=FakeLlama))
    with pytest.raises(AuditGeneratorError, match="CUDA out of memory"):
        generate_audit_draft(ExtractedFacts(), "Paciente confia.", model_path=_model_file(tmp_path))


def test_json_recovery_helpers() -> None:
    assert parse_json_object('{"a": 1}') == {"a": 1}
    assert parse_json_object('texto {"a": {"b": "}"}} resto') == {"a": {"b": "}"}}
    assert parse_json_object("[1, 2]") is None
    assert parse_json_object("") is None
    assert extract_first_json_object("sem json") == ""


def test_model_path_resolution_order(monkeypatch, tmp_path) -> None:
    nested = tmp_path / "MedGemma"
    nested.mkdir()
    discovered = nested / "medgemma-1.5-4b-it-Q5_K_M.gguf"
    discovered.write_text("x", encoding="utf-8")

    monkeypatch.delenv("MEDOPS_MEDGEMMA_GGUF", raising=False)
    monkeypatch.setenv("MEDOPS_MODEL_ROOT", str(tmp_path))
    assert resolve_model_path(None) == str(discovered)

    monkeypatch.setenv("MEDOPS_MEDGEMMA_GGUF", "/models/from-env.gguf")
    assert resolve_model_path(None) == "/models/from-env.gguf"
    assert resolve_model_path("  /models/explicit.gguf ") == "/models/explicit.gguf"
