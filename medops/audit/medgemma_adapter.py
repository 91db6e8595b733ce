from __future__ import annotations

"""
MedGemma audit draft generator.

Design intent:
- Prompt the local model for the 11-section audit JSON.
- Hand back whatever JSON object it produced; the validator decides if it is usable.
- Raise on anything that is not a JSON object so the rules fallback can take over.
"""

import json
import time
from dataclasses import dataclass
from typing import Any

from medops.internal_core.contracts import AUDIT_SECTION_KEYS, AUDIT_SECTION_TITLES, ExtractedFacts
from medops.internal_core.store import utc_now_iso
from medops.utils.llm import (
    LlamaUnavailableError,
    append_debug_log,
    load_llama,
    parse_json_object,
    run_chat_completion,
)

AUDIT_DRAFT_VERSION = "audit_medgemma_v1"


class AuditGeneratorError(RuntimeError):
    """Raised when audit generation fails or returns a non-JSON payload."""


@dataclass(frozen=True)
class AuditDraftResult:
    draft: dict[str, Any]
    debug: dict[str, Any]


def generate_audit_draft(
    facts: ExtractedFacts,
    raw_text: str,
    *,
    model_path: str | None = None,
    max_tokens: int = 1024,
    n_ctx: int = 4096,
    n_gpu_layers: int = -1,
    n_threads: int | None = None,
    chat_format: str | None = None,
    debug_log_path: str | None = None,
) -> AuditDraftResult:
    try:
        llm, load_debug = load_llama(
            model_path,
            n_ctx=n_ctx,
            n_gpu_layers=n_gpu_layers,
            n_threads=n_threads,
            chat_format=chat_format,
        )
    except LlamaUnavailableError as exc:
        raise AuditGeneratorError(str(exc)) from exc

    generated_at = utc_now_iso()
    prompt = _build_prompt(facts, raw_text, generated_at=generated_at)
    append_debug_log(
        debug_log_path,
        stage="audit_prompt_input",
        raw=prompt,
        metadata={"chat_format": load_debug.get("chat_format")},
    )

    started = time.perf_counter()
    try:
        completion = run_chat_completion(llm, prompt=prompt, max_tokens=max_tokens)
    except Exception as exc:
        append_debug_log(debug_log_path, stage="audit_inference_error", raw=str(exc))
        raise AuditGeneratorError(f"MedGemma inference failed: {exc}") from exc
    elapsed_ms = (time.perf_counter() - started) * 1000.0
    append_debug_log(
        debug_log_path,
        stage="audit_inference_end",
        raw="",
        metadata={"elapsed_ms": round(elapsed_ms, 2)},
    )

    raw = completion["content"]
    append_debug_log(debug_log_path, stage="audit_raw_output", raw=raw)
    draft = parse_json_object(raw)
    if draft is None:
        append_debug_log(debug_log_path, stage="audit_parse_error_invalid_json", raw=raw)
        raise AuditGeneratorError("MedGemma returned non-JSON audit payload")

    debug = dict(load_debug)
    debug.update(
        {
            "inference_ms": round(elapsed_ms, 2),
            "response_format_applied": completion["response_format_applied"],
            "response_format_compat_mode": completion["response_format_compat_mode"],
        }
    )
    return AuditDraftResult(draft=draft, debug=debug)


def _build_prompt(facts: ExtractedFacts, raw_text: str, *, generated_at: str) -> str:
    skeleton = {
        "version": AUDIT_DRAFT_VERSION,
        "sections": [
            {"key": key, "title": AUDIT_SECTION_TITLES[key], "findings": [], "missing": []}
            for key in AUDIT_SECTION_KEYS
        ],
        "meta": {"generated_at": generated_at, "note": "no inference; no treatment advice"},
    }
    return (
        "You are a clinical documentation auditor.\n"
        "Return ONLY valid JSON matching exactly this schema and keys:\n"
        + json.dumps(skeleton, ensure_ascii=False)
        + "\n\nHard rules:\n"
        "- Do NOT infer diagnoses. Do NOT suggest treatment.\n"
        "- findings[]: short factual bullets copied from facts (e.g. \"SpO2 initial: 89%\").\n"
        "- missing[]: explicit documentation gaps only, never speculative checklists.\n"
        "- findings[] and missing[] hold STRINGS only and never repeat each other.\n"
        "- List every entry of facts.uncertainties in section K findings.\n"
        f"- meta.generated_at MUST equal {generated_at} exactly.\n\n"
        "Facts:\n"
        + json.dumps(facts.model_dump(), ensure_ascii=False)
        + "\n\nSource note:\n"
        + json.dumps(str(raw_text or ""), ensure_ascii=False)
        + "\nJSON:"
    )
