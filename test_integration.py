"""
test_integration.py - End-to-end verification workflow tests

Final acceptance test for the complete flow:
register -> submit verification -> compare/score -> trust update -> audit

Usage: pytest test_integration.py
"""

from __future__ import annotations

import pytest

from audit import AuditLog
from models import VerificationStatus
from seller_store import SellerNotFoundError, SellerStore
from trust_service import TrustService
from verify import VerificationEngine


@pytest.fixture
def service(tmp_path) -> TrustService:
    audit = AuditLog(path=str(tmp_path / "audit.jsonl"))
    return TrustService(
        SellerStore(str(tmp_path / "sellers.json")),
        engine=VerificationEngine(audit=audit),
        audit=audit,
    )


def test_first_purchase_sets_trust_to_its_score(service, promise, make_invoice) -> None:
    seller = service.register_seller("Asha Traders", "asha@example.com", platform="whatsapp")

    receipt = service.submit_verification(seller.seller_id, "buyer@example.com", promise, make_invoice())

    assert receipt["verificationId"].startswith("ver_")
    assert receipt["status"] == "verified"
    assert receipt["result"]["overallScore"] == 100
    assert receipt["previousTrustScore"] is None
    assert receipt["trustScore"] == 100
    assert receipt["trustLabel"] == "Excellent"

    record = service.store.get_verification(receipt["verificationId"])
    assert record is not None
    assert record.status == VerificationStatus.VERIFIED
    assert record.completed_at is not None
    assert record.overall_score == 100


def test_second_purchase_blends_scores(service, promise, make_invoice) -> None:
    seller = service.register_seller("Asha Traders", "asha@example.com")
    service.submit_verification(seller.seller_id, "a@example.com", promise, make_invoice())
    receipt = service.submit_verification(
        seller.seller_id,
        "b@example.com",
        promise,
        make_invoice(returnPolicy="No returns"),
    )

    # Second score: 80 - 35 - 15 - 25 = 5. avg(5, 100) * 0.6 + 1/2 * 100 * 0.4 = 31.5 + 20
    assert receipt["result"]["overallScore"] == 5
    assert receipt["trustScore"] == 52

    profile = service.get_trust_score(seller.seller_id)
    assert profile["totalVerifications"] == 2
    assert profile["successfulVerifications"] == 1
    assert profile["successRate"] == 50.0
    assert profile["label"] == "Poor"


def test_seller_resolved_by_email_or_name(service, promise, make_invoice) -> None:
    seller = service.register_seller("Asha Traders", "asha@example.com")
    by_email = service.submit_verification("ASHA@example.com", "b@example.com", promise, make_invoice())
    by_name = service.submit_verification("asha traders", "b@example.com", promise, make_invoice())
    assert by_email["sellerId"] == by_name["sellerId"] == seller.seller_id


def test_unknown_seller_stores_nothing(service, promise, make_invoice) -> None:
    with pytest.raises(SellerNotFoundError):
        service.submit_verification("SELLER-NOP-000", "b@example.com", promise, make_invoice())
    assert service.store.stats()["verifications"] == 0
    assert service.audit.list_events(action="verification_started") == []


def test_audit_trail_for_one_submission(service, promise, make_invoice) -> None:
    seller = service.register_seller("Asha Traders", "asha@example.com")
    receipt = service.submit_verification(seller.seller_id, "b@example.com", promise, make_invoice(price=1600))

    actions = [event.action for event in service.audit.list_events(seller_id=seller.seller_id)]
    assert actions == [
        "trust_score_updated",
        "verification_completed",
        "ai_analysis",
        "verification_started",
        "seller_registered",
    ]

    completed = service.audit.list_events(action="verification_completed")[0]
    assert completed.verification_id == receipt["verificationId"]
    assert completed.details["overallScore"] == 30
    assert completed.severity.value == "warning"


def test_public_profile(service, promise, make_invoice) -> None:
    seller = service.register_seller("Asha Traders", "asha@example.com", platform="instagram")

    profile = service.get_public_profile(seller.seller_id)
    assert profile["trustScore"] is None
    assert profile["label"] == "New Seller"
    assert profile["recentAverageScore"] is None

    for price in (1500, 1500, 1600):
        service.submit_verification(seller.seller_id, "b@example.com", promise, make_invoice(price=price))

    profile = service.get_public_profile(seller.seller_id)
    assert profile["platform"] == "instagram"
    assert profile["distribution"] == {"excellent": 2, "good": 0, "fair": 0, "poor": 1}
    assert profile["recentAverageScore"] == 77
    assert profile["trend"] == "improving"
    assert profile["memberSince"] == seller.created_at


def test_state_survives_restart(tmp_path, promise, make_invoice) -> None:
    first = TrustService(SellerStore(str(tmp_path / "sellers.json")))
    seller = first.register_seller("Asha Traders", "asha@example.com")
    first.submit_verification(seller.seller_id, "b@example.com", promise, make_invoice())

    second = TrustService(SellerStore(str(tmp_path / "sellers.json")))
    assert second.get_trust_score(seller.seller_id)["trustScore"] == 100
