"""
scoring.py - Deterministic transaction scoring.

Turns the ordered mismatches from compare.py into one integer score 0-100:

    base      = (5 - n) / 5 * 100
    penalty   = severity weights (high 35 / medium 20 / low 10)
              + n * 8                       when n > 1
              + 15 per price/returnPolicy mismatch
              + 25 flat                     when returnPolicy mismatched
    score     = clamp(base - penalty, 0, 100)

A single return-policy lie costs more than a price lie of similar size:
the score measures trust, not money.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from logging_config import get_logger
from models import FIELD_ORDER, FieldName, Mismatch, Severity
from normalize import clamp_score

logger = get_logger(__name__)

TOTAL_FIELDS = len(FIELD_ORDER)


class ScoringPolicy(BaseModel):
    """Tunable penalty constants.

    Defaults are the product-tuned values every stored score was computed
    with; override only together with a re-score of history.
    """

    model_config = ConfigDict(frozen=True)

    high_penalty: int = Field(default=35, ge=0)
    medium_penalty: int = Field(default=20, ge=0)
    low_penalty: int = Field(default=10, ge=0)

    # Added per mismatch once more than one field disagrees.
    multi_mismatch_penalty: int = Field(default=8, ge=0)

    # Added per mismatch on a critical field.
    critical_field_penalty: int = Field(default=15, ge=0)
    critical_fields: frozenset[FieldName] = frozenset({FieldName.PRICE, FieldName.RETURN_POLICY})

    # Flat, once, on top of the critical-field penalty.
    policy_breach_penalty: int = Field(default=25, ge=0)

    def severity_penalty(self, severity: Severity) -> int:
        if severity == Severity.HIGH:
            return self.high_penalty
        if severity == Severity.MEDIUM:
            return self.medium_penalty
        return self.low_penalty


DEFAULT_POLICY = ScoringPolicy()


class ScoreBreakdown(BaseModel):
    """Every intermediate term of one score computation."""

    mismatch_count: int
    base_score: float
    severity_penalty: int
    multi_mismatch_penalty: int
    critical_field_penalty: int
    policy_breach_penalty: int
    overall_score: int

    @property
    def total_penalty(self) -> int:
        return (
            self.severity_penalty
            + self.multi_mismatch_penalty
            + self.critical_field_penalty
            + self.policy_breach_penalty
        )


def score_breakdown(
    mismatches: list[Mismatch],
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> ScoreBreakdown:
    """Compute the score and keep each penalty term for inspection."""
    count = len(mismatches)
    base_score = (TOTAL_FIELDS - count) / TOTAL_FIELDS * 100.0

    severity_penalty = sum(policy.severity_penalty(m.severity) for m in mismatches)
    multi_penalty = count * policy.multi_mismatch_penalty if count > 1 else 0
    critical_penalty = sum(
        policy.critical_field_penalty for m in mismatches if m.field in policy.critical_fields
    )
    breach_penalty = (
        policy.policy_breach_penalty
        if any(m.field == FieldName.RETURN_POLICY for m in mismatches)
        else 0
    )

    total_penalty = severity_penalty + multi_penalty + critical_penalty + breach_penalty
    overall = clamp_score(base_score - total_penalty)

    logger.debug(
        "score_breakdown | mismatches=%s | base=%.1f | severity=%s | multi=%s | critical=%s | breach=%s | score=%s",
        count,
        base_score,
        severity_penalty,
        multi_penalty,
        critical_penalty,
        breach_penalty,
        overall,
    )
    return ScoreBreakdown(
        mismatch_count=count,
        base_score=base_score,
        severity_penalty=severity_penalty,
        multi_mismatch_penalty=multi_penalty,
        critical_field_penalty=critical_penalty,
        policy_breach_penalty=breach_penalty,
        overall_score=overall,
    )


def compute_score(mismatches: list[Mismatch], policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    """Integer transaction score in [0, 100]."""
    return score_breakdown(mismatches, policy).overall_score
