"""
verify.py - Verification orchestration: external scorer first, rules always.

    pending -> (external attempt) -> ai-scored | rule-scored -> completed

The engine makes at most one external attempt. If the external scorer is
missing, fails its liveness probe, times out, errors, or raises anything at
all, the request silently completes with the deterministic rule-based
result. `VerificationEngine.verify` never raises for validated records.
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Optional, Protocol

from compare import compare_records
from explain import generate_analysis
from logging_config import get_logger
from models import AuditSeverity, InvoiceRecord, PromiseRecord, ScoringSource, VerificationResult
from scoring import DEFAULT_POLICY, ScoringPolicy, compute_score

if TYPE_CHECKING:
    from audit import AuditLog

logger = get_logger(__name__)


class Scorer(Protocol):
    """Anything that can turn a promise/invoice pair into a VerificationResult."""

    name: str

    def is_available(self) -> bool: ...

    def score(self, promise: PromiseRecord, invoice: InvoiceRecord) -> VerificationResult: ...


class RuleBasedScorer:
    """Deterministic comparator + scoring policy. Always available."""

    name = "rule_based"

    def __init__(self, policy: ScoringPolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def is_available(self) -> bool:
        return True

    def score(self, promise: PromiseRecord, invoice: InvoiceRecord) -> VerificationResult:
        mismatches = compare_records(promise, invoice)
        overall = compute_score(mismatches, self.policy)
        return VerificationResult(
            mismatches=mismatches,
            overall_score=overall,
            analysis=generate_analysis(mismatches, overall),
            scored_by=ScoringSource.RULE,
        )


class VerificationEngine:
    """Single entry point for scoring one promise/invoice pair.

    Args:
        external: Optional external scorer (e.g. OllamaScorer). None means
            rule-based only.
        fallback: Deterministic scorer used whenever the external one
            cannot answer.
        audit: Optional AuditLog receiving start/complete/fallback events.
    """

    def __init__(
        self,
        external: Optional[Scorer] = None,
        fallback: Optional[RuleBasedScorer] = None,
        audit: Optional["AuditLog"] = None,
    ) -> None:
        self.external = external
        self.fallback = fallback or RuleBasedScorer()
        self.audit = audit

    def _audit(self, action: str, details: dict, severity: AuditSeverity, **ids) -> None:
        if self.audit is not None:
            self.audit.log(action, details, severity=severity, **ids)

    def _try_external(
        self,
        promise: PromiseRecord,
        invoice: InvoiceRecord,
    ) -> tuple[Optional[VerificationResult], str]:
        """One external attempt. Returns (result, reason) where result is None on failure."""
        if self.external is None:
            return None, "not_configured"

        try:
            if not self.external.is_available():
                return None, "probe_failed"
            return self.external.score(promise, invoice), "ok"
        except Exception as exc:
            logger.warning(
                "verify_external_error | scorer=%s | error_type=%s | error=%s | fallback=rule_based",
                getattr(self.external, "name", type(self.external).__name__),
                type(exc).__name__,
                exc,
            )
            return None, f"{type(exc).__name__}: {exc}"

    def verify(
        self,
        promise: PromiseRecord,
        invoice: InvoiceRecord,
        *,
        seller_id: Optional[str] = None,
        user_id: Optional[str] = None,
        verification_id: Optional[str] = None,
    ) -> VerificationResult:
        """Score a promise/invoice pair. Always returns a complete result."""
        started = time.perf_counter()
        ids = {"seller_id": seller_id, "user_id": user_id, "verification_id": verification_id}

        self._audit(
            "ai_analysis",
            {
                "action": "verification_started",
                "promise": promise.to_wire(),
                "invoice": invoice.to_wire(),
            },
            AuditSeverity.INFO,
            **ids,
        )

        result, reason = self._try_external(promise, invoice)
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 1)

        if result is not None:
            logger.info(
                "verify_complete | scored_by=%s | score=%s | mismatches=%s | elapsed_ms=%.1f",
                result.scored_by.value,
                result.overall_score,
                result.mismatch_count,
                elapsed_ms,
            )
            self._audit(
                "ai_analysis",
                {
                    "action": "ai_verification_completed",
                    "scoredBy": result.scored_by.value,
                    "overallScore": result.overall_score,
                    "mismatchCount": result.mismatch_count,
                    "processingTimeMs": elapsed_ms,
                },
                AuditSeverity.WARNING if result.overall_score < 50 else AuditSeverity.INFO,
                **ids,
            )
            return result

        result = self.fallback.score(promise, invoice)
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 1)
        if reason != "not_configured":
            logger.warning(
                "verify_fallback | reason=%s | score=%s | mismatches=%s | elapsed_ms=%.1f",
                reason,
                result.overall_score,
                result.mismatch_count,
                elapsed_ms,
            )
            self._audit(
                "ai_analysis",
                {
                    "action": "fallback_verification_used",
                    "reason": reason,
                    "overallScore": result.overall_score,
                    "mismatchCount": result.mismatch_count,
                    "processingTimeMs": elapsed_ms,
                },
                AuditSeverity.WARNING,
                **ids,
            )
        else:
            logger.info(
                "verify_complete | scored_by=rule | score=%s | mismatches=%s | elapsed_ms=%.1f",
                result.overall_score,
                result.mismatch_count,
                elapsed_ms,
            )
        return result


_RULE_ENGINE = VerificationEngine()


def verify(promise: PromiseRecord, invoice: InvoiceRecord) -> VerificationResult:
    """Rule-based verification of one pair, no external scorer involved."""
    return _RULE_ENGINE.verify(promise, invoice)
