"""
reputation.py - Seller trust-score aggregation.

Each completed verification updates the seller exactly once:

    total      += 1
    successful += 1                      if score >= 70
    first ever  -> trust = score         (no smoothing on first impression)
    otherwise   -> trust = round(recent_avg * 0.6 + success_rate * 100 * 0.4)

`recent_avg` is the mean of the seller's latest <=10 completed verification
scores, newest first, and already includes the verification being applied.
Recent behaviour dominates, so a seller can recover from a bad patch, but a
sustained failure pattern keeps dragging the success-rate term down.
"""

from __future__ import annotations

import threading
from typing import Optional

from logging_config import get_logger
from models import SellerReputation
from normalize import clamp_score, round_half_up
from seller_store import RECENT_SCORE_LIMIT, ReputationConflictError, SellerStore

logger = get_logger(__name__)

SUCCESS_THRESHOLD = 70
RECENT_WEIGHT = 0.6
SUCCESS_RATE_WEIGHT = 0.4
MAX_UPDATE_ATTEMPTS = 3

TRUST_LABELS: tuple[tuple[int, str], ...] = (
    (90, "Excellent"),
    (80, "Very Good"),
    (70, "Good"),
    (60, "Fair"),
    (0, "Poor"),
)
NEW_SELLER_LABEL = "New Seller"


def apply_verification(
    reputation: SellerReputation,
    score: int,
    recent_scores: list[int],
) -> SellerReputation:
    """Fold one verification score into a reputation. Pure.

    Args:
        reputation: Current aggregate.
        score: The new verification's overall score (0-100).
        recent_scores: Latest completed scores, newest first, including
            `score` itself. Only the first RECENT_SCORE_LIMIT are used.

    Returns:
        A new SellerReputation with the same `version` (the store bumps it).
    """
    total = reputation.total_verifications + 1
    successful = reputation.successful_verifications + (1 if score >= SUCCESS_THRESHOLD else 0)

    if reputation.is_new_seller or total == 1:
        trust = clamp_score(score)
    else:
        success_rate = successful / total
        window = recent_scores[:RECENT_SCORE_LIMIT]
        recent_average = sum(window) / len(window) if window else 0.0
        trust = clamp_score(recent_average * RECENT_WEIGHT + success_rate * 100.0 * SUCCESS_RATE_WEIGHT)

    return SellerReputation(
        trust_score=trust,
        total_verifications=total,
        successful_verifications=successful,
        is_new_seller=False,
        version=reputation.version,
    )


def trust_score_label(score: Optional[int]) -> str:
    if score is None:
        return NEW_SELLER_LABEL
    for lower, label in TRUST_LABELS:
        if score >= lower:
            return label
    return TRUST_LABELS[-1][1]


def summarize_history(scores: list[int]) -> dict:
    """Average, distribution and trend over recent scores (newest first).

    Trend compares the latest 5 against the 5 before them.
    """
    window = scores[:RECENT_SCORE_LIMIT]
    average = round_half_up(sum(window) / len(window)) if window else None

    distribution = {
        "excellent": sum(1 for s in window if s >= 90),
        "good": sum(1 for s in window if 70 <= s < 90),
        "fair": sum(1 for s in window if 50 <= s < 70),
        "poor": sum(1 for s in window if s < 50),
    }

    latest, previous = window[:5], window[5:10]
    latest_avg = sum(latest) / len(latest) if latest else 0.0
    previous_avg = sum(previous) / len(previous) if previous else 0.0
    if latest_avg > previous_avg:
        trend = "improving"
    elif latest_avg < previous_avg:
        trend = "declining"
    else:
        trend = "stable"

    return {"averageScore": average, "distribution": distribution, "trend": trend}


class ReputationAggregator:
    """Applies verification scores to stored sellers, one commit per call.

    Writers for the same seller are serialized by a per-seller lock; the
    store's version check still catches writers outside this aggregator.
    """

    def __init__(self, store: SellerStore, max_attempts: int = MAX_UPDATE_ATTEMPTS) -> None:
        self.store = store
        self.max_attempts = max(1, max_attempts)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _seller_lock(self, seller_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(seller_id, threading.Lock())

    def update_trust_score(self, seller_ref: str, score: int) -> int:
        """Apply `score` to the seller and return the new trust score.

        The verification behind `score` must already be stored as completed.
        Raises SellerNotFoundError (no mutation) for unknown sellers and
        ReputationConflictError only after every retry lost its race.
        """
        seller_id = self.store.get_seller(seller_ref).seller_id
        attempt = 0

        with self._seller_lock(seller_id):
            while True:
                attempt += 1
                current = self.store.get_seller(seller_id).reputation
                recent = self.store.recent_scores(seller_id, RECENT_SCORE_LIMIT)
                updated = apply_verification(current, score, recent)

                try:
                    committed = self.store.compare_and_set_reputation(
                        seller_id,
                        updated,
                        expected_version=current.version,
                    )
                except ReputationConflictError as exc:
                    logger.warning(
                        "trust_update_conflict | seller_id=%s | attempt=%s/%s | expected=%s | found=%s",
                        seller_id,
                        attempt,
                        self.max_attempts,
                        exc.expected,
                        exc.found,
                    )
                    if attempt >= self.max_attempts:
                        raise
                    continue

                rep = committed.reputation
                logger.info(
                    "trust_updated | seller_id=%s | score=%s | old_trust=%s | new_trust=%s | total=%s | successful=%s",
                    seller_id,
                    score,
                    current.trust_score,
                    rep.trust_score,
                    rep.total_verifications,
                    rep.successful_verifications,
                )
                return rep.trust_score
