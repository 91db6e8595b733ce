from __future__ import annotations

"""
Case orchestration: one note in, one immutable case record out.

Design intent:
- Keep the failure contract in one place: every service failure becomes provenance.
- The worst outcome is a rules-only report, never a missing record.
- External calls run sequentially, each under the configured timeout.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Optional

from medops.audit.fallback import build_fallback_report
from medops.audit.medgemma_adapter import AuditDraftResult, generate_audit_draft
from medops.audit.validator import (
    apply_documentation_minimums,
    inject_uncertainties,
    validate_audit_draft,
)
from medops.facts.extractor import extract_minimal_facts
from medops.facts.medgemma_adapter import FactsAdapterResult, extract_facts_with_medgemma
from medops.facts.normalizer import normalize_facts
from medops.internal_core.config import ServiceConfig
from medops.internal_core.contracts import AuditReport, CaseRecord, ExtractedFacts, GatePayload
from medops.internal_core.store import InMemoryCaseStore, new_case_id, utc_now_iso
from medops.risk.gate import GateDecision, classify_case

logger = logging.getLogger(__name__)

ExtractFn = Callable[[str], Any]
GenerateFn = Callable[[ExtractedFacts, str], Any]


class CaseInputError(ValueError):
    """Raised when the submitted note cannot be ingested."""


@dataclass(frozen=True)
class IngestResult:
    case_id: str
    ran_audit: bool
    reason_code: str
    facts_provider: str
    audit_provider: Optional[str]


def ingest_case(
    raw_text: str,
    *,
    store: InMemoryCaseStore,
    config: ServiceConfig,
    extract_fn: Optional[ExtractFn] = None,
    generate_fn: Optional[GenerateFn] = None,
) -> IngestResult:
    text = str(raw_text or "")
    min_chars = config.MEDOPS_MIN_RAW_TEXT_CHARS
    if len(text.strip()) < min_chars:
        raise CaseInputError(
            f"raw_text must contain at least {min_chars} non-blank characters (got {len(text.strip())})."
        )

    case_id = new_case_id()
    debug: dict[str, Any] = {}

    payload, facts_provider, facts_error = _run_extraction(text, config, extract_fn, debug)
    normalization = normalize_facts(payload, text)
    facts = normalization.facts
    debug["normalization_repairs"] = list(normalization.repairs)
    debug["enforcement"] = {
        "forced": normalization.enforcement.forced,
        "reasons": list(normalization.enforcement.reasons),
    }

    decision = classify_case(facts, text)
    logger.info(
        "case %s gate run_audit=%s reason=%s facts_provider=%s",
        case_id,
        decision.run_audit,
        decision.reason_code.value,
        facts_provider,
    )

    audit: Optional[AuditReport] = None
    audit_provider: Optional[str] = None
    audit_error: Optional[str] = None
    if decision.run_audit:
        audit, audit_provider, audit_error = _run_audit(text, facts, decision, config, generate_fn, debug)

    record = CaseRecord(
        id=case_id,
        created_at=utc_now_iso(),
        raw_text=text,
        facts=facts,
        gate=GatePayload(**decision.to_payload()),
        audit=audit,
        facts_provider=facts_provider,
        facts_error=facts_error,
        audit_provider=audit_provider,
        audit_error=audit_error,
        debug=debug,
    )
    store.save_case(record)
    return IngestResult(
        case_id=case_id,
        ran_audit=decision.run_audit,
        reason_code=decision.reason_code.value,
        facts_provider=facts_provider,
        audit_provider=audit_provider,
    )


def call_with_timeout(fn: Callable[..., Any], timeout_sec: float, *args: Any) -> Any:
    """Run `fn` in a worker thread; a timeout raises concurrent.futures.TimeoutError."""
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="medops-service")
    future = executor.submit(fn, *args)
    try:
        return future.result(timeout=timeout_sec)
    finally:
        # A timed-out call keeps running in its thread; its result is discarded.
        executor.shutdown(wait=False)


def _run_extraction(
    text: str,
    config: ServiceConfig,
    extract_fn: Optional[ExtractFn],
    debug: dict[str, Any],
) -> tuple[Any, str, Optional[str]]:
    if config.MEDOPS_FACTS_PROVIDER != "medgemma":
        return extract_minimal_facts(text), "rules", None

    fn = extract_fn or _default_extract_fn(config)
    try:
        result = call_with_timeout(fn, config.MEDOPS_SERVICE_TIMEOUT_SEC, text)
    except FuturesTimeoutError:
        error = f"facts extraction timed out after {config.MEDOPS_SERVICE_TIMEOUT_SEC}s"
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"
    else:
        if isinstance(result, FactsAdapterResult):
            debug["facts_adapter"] = result.debug
            result = result.payload
        return result, "medgemma", None

    logger.warning("facts extraction failed, using rules fallback: %s", error)
    return extract_minimal_facts(text), "rules_fallback", error


def _run_audit(
    text: str,
    facts: ExtractedFacts,
    decision: GateDecision,
    config: ServiceConfig,
    generate_fn: Optional[GenerateFn],
    debug: dict[str, Any],
) -> tuple[AuditReport, str, Optional[str]]:
    report: Optional[AuditReport] = None
    error: Optional[str] = None

    if config.MEDOPS_AUDIT_PROVIDER == "medgemma":
        fn = generate_fn or _default_generate_fn(config)
        try:
            draft = call_with_timeout(fn, config.MEDOPS_SERVICE_TIMEOUT_SEC, facts, text)
        except FuturesTimeoutError:
            error = f"audit generation timed out after {config.MEDOPS_SERVICE_TIMEOUT_SEC}s"
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
        else:
            if isinstance(draft, AuditDraftResult):
                debug["audit_adapter"] = draft.debug
                draft = draft.draft
            validation = validate_audit_draft(draft)
            if validation.ok:
                report = validation.report
                provider = "medgemma_patched"
            else:
                error = validation.error
                debug["audit_validation_error"] = validation.error
                logger.warning("audit draft rejected: %s", validation.error)
        if report is None:
            logger.warning("audit generation failed, using rules fallback: %s", error)
            report = build_fallback_report(facts)
            provider = "rules_fallback_patched"
    else:
        report = build_fallback_report(facts)
        provider = "rules_patched"

    final = _patch_report(report, facts, decision)
    revalidation = validate_audit_draft(final)
    if not revalidation.ok:
        # Patching a generated draft can still leave it invalid; fall back once more.
        logger.warning("patched audit failed validation: %s", revalidation.error)
        error = revalidation.error
        provider = "rules_fallback_patched"
        final = _patch_report(build_fallback_report(facts), facts, decision)
    return final, provider, error


def _patch_report(report: AuditReport, facts: ExtractedFacts, decision: GateDecision) -> AuditReport:
    patched = apply_documentation_minimums(report, facts, decision)
    return inject_uncertainties(patched, facts.uncertainties)


def _default_extract_fn(config: ServiceConfig) -> ExtractFn:
    kwargs = config.llm_kwargs()

    def _extract(text: str) -> FactsAdapterResult:
        return extract_facts_with_medgemma(text, **kwargs)  # type: ignore[arg-type]

    return _extract


def _default_generate_fn(config: ServiceConfig) -> GenerateFn:
    kwargs = config.llm_kwargs()

    def _generate(facts: ExtractedFacts, text: str) -> AuditDraftResult:
        return generate_audit_draft(facts, text, **kwargs)  # type: ignore[arg-type]

    return _generate
