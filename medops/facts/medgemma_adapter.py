from __future__ import annotations

"""
MedGemma fact extraction adapter.

Design intent:
- Ask the local model for ExtractedFacts JSON and nothing else.
- Return the parsed object untouched; repair and validation happen in the normalizer.
- Fail closed on model or parse errors so the rule-based stub can take over.
"""

import json
import time
from dataclasses import dataclass
from typing import Any

from medops.utils.llm import (
    LlamaUnavailableError,
    append_debug_log,
    load_llama,
    parse_json_object,
    run_chat_completion,
)


class FactsAdapterError(RuntimeError):
    """Raised when model extraction fails or returns a non-JSON payload."""


@dataclass(frozen=True)
class FactsAdapterResult:
    payload: dict[str, Any]
    debug: dict[str, Any]


_FACTS_SCHEMA_HINT = {
    "meta": {"schema_version": "extracted_facts_v1", "language": "pt-BR", "source": "raw_text"},
    "patient": {"age": None, "sex": None},
    "presenting_problem": {"chief_complaint": None, "duration": None, "onset": None, "associated_symptoms": []},
    "comorbidities": [],
    "physical_exam": [],
    "vitals": {
        "spo2_initial": None,
        "spo2_on_o2": None,
        "hr": None,
        "bp_systolic": None,
        "bp_diastolic": None,
        "temp": None,
        "rr": None,
    },
    "oxygen_therapy": {"device": None, "flow_l_min": None},
    "medications": [],
    "labs": [{"test": "", "result": None, "status": "done|pending|not_done"}],
    "pending_exams": [],
    "uncertainties": [],
}


def extract_facts_with_medgemma(
    raw_text: str,
    *,
    model_path: str | None = None,
    max_tokens: int = 1024,
    n_ctx: int = 4096,
    n_gpu_layers: int = -1,
    n_threads: int | None = None,
    chat_format: str | None = None,
    debug_log_path: str | None = None,
) -> FactsAdapterResult:
    """
    Extract structured facts from one note via local GGUF model.

    Raises FactsAdapterError when the model is unavailable, inference fails,
    or the output has no JSON object in it.
    """

    try:
        llm, load_debug = load_llama(
            model_path,
            n_ctx=n_ctx,
            n_gpu_layers=n_gpu_layers,
            n_threads=n_threads,
            chat_format=chat_format,
        )
    except LlamaUnavailableError as exc:
        raise FactsAdapterError(str(exc)) from exc

    prompt = _build_prompt(raw_text)
    append_debug_log(
        debug_log_path,
        stage="facts_prompt_input",
        raw=prompt,
        metadata={"chars": len(raw_text or ""), "chat_format": load_debug.get("chat_format")},
    )

    started = time.perf_counter()
    try:
        completion = run_chat_completion(llm, prompt=prompt, max_tokens=max_tokens)
    except Exception as exc:
        append_debug_log(debug_log_path, stage="facts_inference_error", raw=str(exc))
        raise FactsAdapterError(f"MedGemma inference failed: {exc}") from exc
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    append_debug_log(
        debug_log_path,
        stage="facts_inference_end",
        raw="",
        metadata={"elapsed_ms": round(elapsed_ms, 2)},
    )

    raw = completion["content"]
    append_debug_log(debug_log_path, stage="facts_raw_output", raw=raw)
    payload = parse_json_object(raw)
    if payload is None:
        append_debug_log(debug_log_path, stage="facts_parse_error_invalid_json", raw=raw)
        raise FactsAdapterError("MedGemma returned non-JSON facts payload")

    debug = dict(load_debug)
    debug.update(
        {
            "inference_ms": round(elapsed_ms, 2),
            "response_format_applied": completion["response_format_applied"],
            "response_format_compat_mode": completion["response_format_compat_mode"],
        }
    )
    return FactsAdapterResult(payload=payload, debug=debug)


def _build_prompt(raw_text: str) -> str:
    return (
        "Task: Extract structured facts from an emergency department note written in Brazilian Portuguese.\n"
        "Return ONLY one JSON object with exactly these keys:\n"
        + json.dumps(_FACTS_SCHEMA_HINT, ensure_ascii=False)
        + "\n\nRules:\n"
        "- Copy only values literally present in the note. Use null or [] when absent.\n"
        "- Do NOT infer diagnoses. Do NOT suggest treatment.\n"
        "- spo2_initial is room-air saturation; spo2_on_o2 is saturation on oxygen.\n"
        '- uncertainties: strings shaped exactly as Label: "verbatim fragment of the note",\n'
        "  one per claim stated without objective data (severity, diagnosis, started treatment).\n\n"
        "Note:\n"
        + json.dumps(str(raw_text or ""), ensure_ascii=False)
        + "\nJSON:"
    )
