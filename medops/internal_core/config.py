from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_opt_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return int(value)


def _getenv_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _getenv_choice(name: str, default: str, allowed: set[str]) -> str:
    value = _getenv_str(name, default).strip().lower()
    if value not in allowed:
        raise ValueError(f"{name} must be one of {sorted(allowed)}, got {value!r}")
    return value


def _resolve_debug_log_path(raw: str) -> str:
    raw = raw.strip()
    if not raw:
        return ""
    if raw.lower() in {"1", "true", "on", "yes"}:
        return "/tmp/medops_llm_raw.log"
    return raw


@dataclass(frozen=True)
class ServiceConfig:
    MEDOPS_FACTS_PROVIDER: str
    MEDOPS_AUDIT_PROVIDER: str
    MEDOPS_MEDGEMMA_GGUF: str
    MEDOPS_LLM_CHAT_FORMAT: str
    MEDOPS_LLM_MAX_TOKENS: int
    MEDOPS_LLM_N_CTX: int
    MEDOPS_LLM_N_GPU_LAYERS: int
    MEDOPS_LLM_N_THREADS: Optional[int]
    MEDOPS_SERVICE_TIMEOUT_SEC: float
    MEDOPS_MIN_RAW_TEXT_CHARS: int
    MEDOPS_LOG_LEVEL: str
    MEDOPS_LLM_DEBUG_LOG: str

    def llm_kwargs(self) -> dict[str, object]:
        return {
            "model_path": self.MEDOPS_MEDGEMMA_GGUF or None,
            "max_tokens": self.MEDOPS_LLM_MAX_TOKENS,
            "n_ctx": self.MEDOPS_LLM_N_CTX,
            "n_gpu_layers": self.MEDOPS_LLM_N_GPU_LAYERS,
            "n_threads": self.MEDOPS_LLM_N_THREADS,
            "chat_format": self.MEDOPS_LLM_CHAT_FORMAT,
            "debug_log_path": self.MEDOPS_LLM_DEBUG_LOG or None,
        }


def load_config() -> ServiceConfig:
    providers = {"rules", "medgemma"}
    return ServiceConfig(
        MEDOPS_FACTS_PROVIDER=_getenv_choice("MEDOPS_FACTS_PROVIDER", "rules", providers),
        MEDOPS_AUDIT_PROVIDER=_getenv_choice("MEDOPS_AUDIT_PROVIDER", "rules", providers),
        MEDOPS_MEDGEMMA_GGUF=_getenv_str("MEDOPS_MEDGEMMA_GGUF", "").strip(),
        MEDOPS_LLM_CHAT_FORMAT=_getenv_str("MEDOPS_LLM_CHAT_FORMAT", "gemma"),
        MEDOPS_LLM_MAX_TOKENS=_getenv_int("MEDOPS_LLM_MAX_TOKENS", 1024),
        MEDOPS_LLM_N_CTX=_getenv_int("MEDOPS_LLM_N_CTX", 4096),
        MEDOPS_LLM_N_GPU_LAYERS=_getenv_int("MEDOPS_LLM_N_GPU_LAYERS", -1),
        MEDOPS_LLM_N_THREADS=_getenv_opt_int("MEDOPS_LLM_N_THREADS"),
        MEDOPS_SERVICE_TIMEOUT_SEC=_getenv_float("MEDOPS_SERVICE_TIMEOUT_SEC", 30.0),
        MEDOPS_MIN_RAW_TEXT_CHARS=_getenv_int("MEDOPS_MIN_RAW_TEXT_CHARS", 10),
        MEDOPS_LOG_LEVEL=_getenv_str("MEDOPS_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        MEDOPS_LLM_DEBUG_LOG=_resolve_debug_log_path(_getenv_str("MEDOPS_LLM_DEBUG_LOG", "")),
    )
