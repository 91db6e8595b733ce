from __future__ import annotations

"""
Shared llama-cpp plumbing for the local MedGemma adapters.

Design intent:
- One place for model loading, chat completion and JSON recovery.
- Tolerate llama_cpp builds that reject `chat_format` or `response_format`.
- Raw model output only ever goes to the optional debug log.
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Sequence

DEFAULT_STOP_SEQUENCES: tuple[str, ...] = ("```", "<end_of_turn>", "</s>")
MODEL_GLOB = "medgemma*.gguf"


class LlamaUnavailableError(RuntimeError):
    """Raised when the local model cannot be located, imported or loaded."""


def model_search_roots() -> list[Path]:
    repo_root = Path(__file__).resolve().parents[2]
    roots = [repo_root / "models", repo_root]
    configured = os.getenv("MEDOPS_MODEL_ROOT", "").strip()
    if configured:
        roots.insert(0, Path(configured).expanduser())
    return roots


def resolve_model_path(explicit_path: str | None = None) -> str:
    """Explicit path, then MEDOPS_MEDGEMMA_GGUF, then the first `medgemma*.gguf` under the search roots."""
    for candidate in (explicit_path, os.getenv("MEDOPS_MEDGEMMA_GGUF")):
        value = str(candidate or "").strip()
        if value:
            return value
    for root in model_search_roots():
        if not root.is_dir():
            continue
        matches = sorted(root.glob(MODEL_GLOB)) or sorted(root.glob(f"*/{MODEL_GLOB}"))
        if matches:
            return str(matches[0])
    return ""


def load_llama(
    model_path: str | None,
    *,
    n_ctx: int,
    n_gpu_layers: int,
    n_threads: int | None,
    chat_format: str | None,
) -> tuple[Any, dict[str, Any]]:
    resolved_model_path = resolve_model_path(model_path)
    if not resolved_model_path:
        raise LlamaUnavailableError(
            "MedGemma model path is missing. Set MEDOPS_MEDGEMMA_GGUF "
            "or place a medgemma*.gguf under MEDOPS_MODEL_ROOT."
        )
    if not os.path.exists(resolved_model_path):
        raise LlamaUnavailableError(f"MedGemma model file not found: {resolved_model_path}")

    try:
        from llama_cpp import Llama  # type: ignore
    except Exception as exc:
        raise LlamaUnavailableError(f"llama_cpp import failed: {exc}") from exc

    chosen_chat_format = chat_format or "gemma"
    llm_kwargs: dict[str, Any] = {
        "model_path": resolved_model_path,
        "n_ctx": int(n_ctx),
        "n_gpu_layers": int(n_gpu_layers),
        "verbose": False,
        "chat_format": chosen_chat_format,
    }
    if n_threads is not None:
        llm_kwargs["n_threads"] = int(n_threads)

    debug: dict[str, Any] = {
        "model_path": resolved_model_path,
        "chat_format": chosen_chat_format,
    }
    try:
        try:
            llm = Llama(**llm_kwargs)
            debug["chat_format_applied"] = True
            debug["chat_format_compat_mode"] = "constructor_arg"
        except TypeError as exc:
            if "chat_format" not in str(exc):
                raise
            llm_kwargs.pop("chat_format", None)
            llm = Llama(**llm_kwargs)
            debug["chat_format_applied"] = False
            debug["chat_format_compat_mode"] = "constructor_omitted_unsupported"
    except Exception as exc:
        raise LlamaUnavailableError(f"llama_cpp model load failed: {exc}") from exc
    return llm, debug


def run_chat_completion(
    llm: Any,
    *,
    prompt: str,
    max_tokens: int,
    stop_sequences: Sequence[str] = DEFAULT_STOP_SEQUENCES,
    response_format_json: bool = True,
) -> dict[str, Any]:
    completion_kwargs: dict[str, Any] = {
        "messages": [{"role": "user", "content": prompt}],
        "temperature": 0.0,
        "top_p": 1.0,
        "max_tokens": int(max_tokens),
        "stop": list(stop_sequences),
    }
    if response_format_json:
        completion_kwargs["response_format"] = {"type": "json_object"}
        response_format_compat_mode = "explicit_arg"
    else:
        response_format_compat_mode = "not_requested"

    response_format_applied = False
    try:
        resp = llm.create_chat_completion(**completion_kwargs)
        response_format_applied = "response_format" in completion_kwargs
    except TypeError as exc:
        if "response_format" in str(exc) and "response_format" in completion_kwargs:
            completion_kwargs.pop("response_format", None)
            resp = llm.create_chat_completion(**completion_kwargs)
            response_format_compat_mode = "omitted_unsupported"
        else:
            raise

    raw = str(resp["choices"][0]["message"]["content"] or "").strip()
    return {
        "content": raw,
        "response_format_applied": response_format_applied,
        "response_format_compat_mode": response_format_compat_mode,
    }


def parse_json_object(raw: str) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    extracted = extract_first_json_object(raw)
    if not extracted:
        return None
    try:
        data = json.loads(extracted)
    except ValueError:
        return None
    if isinstance(data, dict):
        return data
    return None


def extract_first_json_object(text: str) -> str:
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text[start:], start=start):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""


def append_debug_log(path: str | None, *, stage: str, raw: str, metadata: dict[str, Any] | None = None) -> None:
    if not path:
        return
    try:
        target = Path(path).expanduser()
        target.parent.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat()
        meta = json.dumps(metadata or {}, ensure_ascii=True, default=str)
        payload = (
            f"[{stamp}] stage={stage} meta={meta}\n"
            "-----BEGIN MEDOPS LLM RAW-----\n"
            f"{raw}\n"
            "-----END MEDOPS LLM RAW-----\n"
        )
        with target.open("a", encoding="utf-8") as f:
            f.write(payload)
    except Exception:
        # Debug logging must never break the pipeline.
        return
