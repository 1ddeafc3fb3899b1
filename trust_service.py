"""
trust_service.py - End-to-end seller verification workflow.

    resolve seller -> save pending record -> verify -> mark verified
                   -> update trust score -> audit

No HTTP or CLI concerns live here; api.py and main.py both call into this
module so the two surfaces stay behaviourally identical.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Optional

from audit import AuditLog
from logging_config import get_logger
from models import (
    AuditSeverity,
    InvoiceRecord,
    Platform,
    PromiseRecord,
    Seller,
    VerificationRecord,
    VerificationStatus,
    utc_now,
)
from reputation import ReputationAggregator, summarize_history, trust_score_label
from seller_store import RECENT_SCORE_LIMIT, SellerStore
from verify import VerificationEngine

logger = get_logger(__name__)


def generate_verification_id() -> str:
    return f"ver_{secrets.token_hex(8)}"


class TrustService:
    """Glue between the seller store, the verification engine and the audit log."""

    def __init__(
        self,
        store: SellerStore,
        engine: Optional[VerificationEngine] = None,
        audit: Optional[AuditLog] = None,
    ) -> None:
        self.store = store
        self.audit = audit if audit is not None else AuditLog(path="")
        self.engine = engine if engine is not None else VerificationEngine(audit=self.audit)
        self.aggregator = ReputationAggregator(store)

    def register_seller(
        self,
        name: str,
        email: str,
        platform: Platform | str = Platform.OTHER,
        phone: Optional[str] = None,
    ) -> Seller:
        seller = self.store.register_seller(name=name, email=email, platform=platform, phone=phone)
        self.audit.log(
            "seller_registered",
            {"name": seller.name, "email": seller.email, "platform": seller.platform.value},
            seller_id=seller.seller_id,
        )
        return seller

    def submit_verification(
        self,
        seller_ref: str,
        buyer_email: str,
        promise: PromiseRecord,
        invoice: InvoiceRecord,
    ) -> dict[str, Any]:
        """Verify one purchase against a registered seller and update their trust score.

        Raises:
            SellerNotFoundError: no seller matches `seller_ref`. Nothing is stored.
            ReputationConflictError: the trust update lost every retry.
        """
        started = time.perf_counter()
        seller = self.store.get_seller(seller_ref)
        seller_id = seller.seller_id

        record = self.store.save_verification(
            VerificationRecord(
                verification_id=generate_verification_id(),
                seller_id=seller_id,
                buyer_email=buyer_email,
                promise=promise,
                invoice=invoice,
            )
        )
        self.audit.log(
            "verification_started",
            {"buyerEmail": buyer_email, "sellerName": seller.name},
            seller_id=seller_id,
            user_id=buyer_email,
            verification_id=record.verification_id,
        )

        result = self.engine.verify(
            promise,
            invoice,
            seller_id=seller_id,
            user_id=buyer_email,
            verification_id=record.verification_id,
        )

        # The trust update reads recent scores, so the record must be completed first.
        completed = record.model_copy(
            update={
                "result": result,
                "status": VerificationStatus.VERIFIED,
                "completed_at": utc_now(),
            }
        )
        self.store.save_verification(completed)

        previous_trust = seller.reputation.trust_score
        new_trust = self.aggregator.update_trust_score(seller_id, result.overall_score)
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 1)

        self.audit.log(
            "verification_completed",
            {
                "overallScore": result.overall_score,
                "mismatchCount": result.mismatch_count,
                "scoredBy": result.scored_by.value,
            },
            severity=AuditSeverity.WARNING if result.has_high_severity else AuditSeverity.INFO,
            seller_id=seller_id,
            user_id=buyer_email,
            verification_id=record.verification_id,
            processing_time_ms=elapsed_ms,
        )
        self.audit.log(
            "trust_score_updated",
            {
                "previousTrustScore": previous_trust,
                "newTrustScore": new_trust,
                "verificationScore": result.overall_score,
            },
            seller_id=seller_id,
            verification_id=record.verification_id,
        )

        logger.info(
            "verification_submitted | verification_id=%s | seller_id=%s | score=%s | trust=%s->%s | elapsed_ms=%.1f",
            record.verification_id,
            seller_id,
            result.overall_score,
            previous_trust,
            new_trust,
            elapsed_ms,
        )

        return {
            "verificationId": record.verification_id,
            "sellerId": seller_id,
            "sellerName": seller.name,
            "status": completed.status.value,
            "result": result.model_dump(mode="json", by_alias=True),
            "previousTrustScore": previous_trust,
            "trustScore": new_trust,
            "trustLabel": trust_score_label(new_trust),
            "processingTimeMs": elapsed_ms,
        }

    def get_trust_score(self, seller_ref: str) -> dict[str, Any]:
        seller = self.store.get_seller(seller_ref)
        rep = seller.reputation
        return {
            "sellerId": seller.seller_id,
            "name": seller.name,
            "platform": seller.platform.value,
            "trustScore": rep.trust_score,
            "label": trust_score_label(rep.trust_score),
            "totalVerifications": rep.total_verifications,
            "successfulVerifications": rep.successful_verifications,
            "successRate": round(rep.success_rate, 1),
            "isNewSeller": rep.is_new_seller,
            "updatedAt": seller.updated_at,
        }

    def get_public_profile(self, seller_ref: str) -> dict[str, Any]:
        """Buyer-facing profile: trust score plus recent-history summary."""
        profile = self.get_trust_score(seller_ref)
        history = summarize_history(self.store.recent_scores(profile["sellerId"], RECENT_SCORE_LIMIT))
        profile.update(
            {
                "recentAverageScore": history["averageScore"],
                "distribution": history["distribution"],
                "trend": history["trend"],
                "memberSince": self.store.get_seller(profile["sellerId"]).created_at,
            }
        )
        return profile
