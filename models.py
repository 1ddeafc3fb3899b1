"""
models.py - Data Models for the Promise/Invoice Verification Engine

This file defines ALL data structures that cross a module seam:

    compare.py      ->  list[Mismatch]
    scoring.py      ->  int score (from list[Mismatch])
    verify.py       ->  VerificationResult
    reputation.py   ->  SellerReputation
    seller_store.py ->  Seller, VerificationRecord
    audit.py        ->  AuditEvent

Design principles:
1. Records that describe a transaction (promise, invoice, mismatch, result)
   are frozen once created
2. Wire names are camelCase (`deliveryCharges`), Python attributes are
   snake_case (`delivery_charges`); both are accepted on input
3. Invariants live in validators, so an invalid record cannot be built
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from normalize import clamp_score, normalize_date


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every created/updated field."""
    return datetime.now(timezone.utc).isoformat()


class FieldName(str, Enum):
    """The five compared fields, in their fixed check order."""

    PRICE = "price"
    DELIVERY_CHARGES = "deliveryCharges"
    DELIVERY_TIME = "deliveryTime"
    RETURN_POLICY = "returnPolicy"
    PRODUCT_DESCRIPTION = "productDescription"


FIELD_ORDER: tuple[FieldName, ...] = (
    FieldName.PRICE,
    FieldName.DELIVERY_CHARGES,
    FieldName.DELIVERY_TIME,
    FieldName.RETURN_POLICY,
    FieldName.PRODUCT_DESCRIPTION,
)


class Severity(str, Enum):
    """How much a single mismatch hurts the transaction score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ScoringSource(str, Enum):
    """Which scorer produced a VerificationResult."""

    # External LLM scorer returned a parseable JSON verdict.
    AI = "ai"

    # External scorer answered but no JSON object could be recovered;
    # the result is the neutral 50 with the raw text as analysis.
    AI_UNPARSED = "ai_unparsed"

    # Deterministic comparator + scoring policy.
    RULE = "rule"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    DISPUTED = "disputed"


class Platform(str, Enum):
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    OTHER = "other"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class PromiseRecord(BaseModel):
    """What the seller claimed at time of sale (chat, social post, listing).

    Captured by the buyer-facing intake step and never modified afterwards.
    All five fields are compared against the invoice by compare.py.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    price: float = Field(
        ...,
        ge=0,
        description="Promised product price. Compared with a 0.01 tolerance.",
    )
    delivery_charges: float = Field(
        ...,
        ge=0,
        alias="deliveryCharges",
        description="Promised delivery/shipping charge. 0 for free delivery.",
    )
    delivery_time: str = Field(
        ...,
        alias="deliveryTime",
        description="Promised delivery window as free text, e.g. '2-3 days'.",
    )
    return_policy: str = Field(
        ...,
        alias="returnPolicy",
        description=(
            "Promised return/warranty terms as free text. Usually carries an "
            "embedded duration: '7 days return policy', '1 year warranty', "
            "'no returns'."
        ),
    )
    product_description: str = Field(
        ...,
        alias="productDescription",
        description=(
            "What the buyer was told they would receive. At least 10 "
            "characters is recommended for a meaningful comparison."
        ),
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class InvoiceRecord(PromiseRecord):
    """What was actually delivered. Treated as ground truth.

    Same five fields as the promise, plus the optional invoice identifiers
    printed on the bill.
    """

    invoice_number: Optional[str] = Field(
        default=None,
        alias="invoiceNumber",
        description="Invoice/bill number as printed, if any.",
    )
    invoice_date: Optional[str] = Field(
        default=None,
        alias="invoiceDate",
        description="Invoice date normalized to YYYY-MM-DD. None when missing or unreadable.",
    )

    @field_validator("invoice_date", mode="before")
    @classmethod
    def _normalize_invoice_date(cls, value: Any) -> Optional[str]:
        normalized = normalize_date(value)
        return normalized or None


class Mismatch(BaseModel):
    """One field on which the invoice disagrees with the promise."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    field: FieldName
    promised: Union[float, str]
    actual: Union[float, str]
    severity: Severity
    explanation: str

    @field_validator("field", mode="before")
    @classmethod
    def _coerce_field(cls, value: Any) -> Any:
        # External scorers write "delivery_charges", "Delivery Charges", ...
        if isinstance(value, FieldName) or not isinstance(value, str):
            return value
        compact = value.replace("_", "").replace(" ", "").lower()
        for name in FieldName:
            if name.value.lower() == compact:
                return name
        return value

    @field_validator("severity", mode="before")
    @classmethod
    def _coerce_severity(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class VerificationResult(BaseModel):
    """Outcome of one promise/invoice comparison.

    `overall_score` is always an integer in [0, 100]; out-of-range input
    (including scores reported by the external scorer) is clamped.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    mismatches: list[Mismatch] = Field(default_factory=list)
    overall_score: int = Field(..., ge=0, le=100, alias="overallScore")
    analysis: str = ""
    scored_by: ScoringSource = Field(default=ScoringSource.RULE, alias="scoredBy")

    @field_validator("overall_score", mode="before")
    @classmethod
    def _clamp_score(cls, value: Any) -> int:
        return clamp_score(value)

    @property
    def mismatch_count(self) -> int:
        return len(self.mismatches)

    @property
    def has_high_severity(self) -> bool:
        return any(m.severity == Severity.HIGH for m in self.mismatches)

    @property
    def is_perfect_match(self) -> bool:
        return not self.mismatches and self.overall_score == 100


class SellerReputation(BaseModel):
    """Running reputation aggregate for one seller.

    Lifecycle:
        registration       -> trust_score=None, counters 0, is_new_seller=True
        first verification -> trust_score = that verification's score
        later              -> 60% recent average + 40% lifetime success rate

    `version` is the optimistic-concurrency token; the store bumps it on
    every successful write.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    trust_score: Optional[int] = Field(default=None, ge=0, le=100, alias="trustScore")
    total_verifications: int = Field(default=0, ge=0, alias="totalVerifications")
    successful_verifications: int = Field(default=0, ge=0, alias="successfulVerifications")
    is_new_seller: bool = Field(default=True, alias="isNewSeller")
    version: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _check_counters(self) -> "SellerReputation":
        if self.successful_verifications > self.total_verifications:
            raise ValueError("successfulVerifications cannot exceed totalVerifications")
        if (self.trust_score is None) != (self.total_verifications == 0):
            raise ValueError("trustScore must be unset exactly when totalVerifications is 0")
        return self

    @property
    def success_rate(self) -> float:
        """Lifetime success rate as a percentage (0-100)."""
        if self.total_verifications == 0:
            return 0.0
        return self.successful_verifications / self.total_verifications * 100.0


class Seller(BaseModel):
    """A registered seller and its reputation aggregate."""

    model_config = ConfigDict(populate_by_name=True)

    seller_id: str = Field(..., alias="sellerId")
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: Optional[str] = None
    platform: Platform = Platform.OTHER
    reputation: SellerReputation = Field(default_factory=SellerReputation)
    created_at: str = Field(default_factory=utc_now, alias="createdAt")
    updated_at: str = Field(default_factory=utc_now, alias="updatedAt")

    @field_validator("email", mode="before")
    @classmethod
    def _normalize_email(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        if "@" not in text:
            raise ValueError("email must contain '@'")
        return text

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> str:
        return str(value or "").strip()


class VerificationRecord(BaseModel):
    """Audit-grade record of one submitted verification."""

    model_config = ConfigDict(populate_by_name=True)

    verification_id: str = Field(..., alias="verificationId")
    seller_id: str = Field(..., alias="sellerId")
    buyer_email: str = Field(..., alias="buyerEmail")
    promise: PromiseRecord
    invoice: InvoiceRecord
    result: Optional[VerificationResult] = None
    status: VerificationStatus = VerificationStatus.PENDING
    created_at: str = Field(default_factory=utc_now, alias="createdAt")
    completed_at: Optional[str] = Field(default=None, alias="completedAt")

    @property
    def overall_score(self) -> Optional[int]:
        return self.result.overall_score if self.result is not None else None


class AuditEvent(BaseModel):
    """Append-only audit trail entry."""

    model_config = ConfigDict(populate_by_name=True)

    event_id: str = Field(..., alias="eventId")
    action: str
    severity: AuditSeverity = AuditSeverity.INFO
    details: dict[str, Any] = Field(default_factory=dict)
    seller_id: Optional[str] = Field(default=None, alias="sellerId")
    user_id: Optional[str] = Field(default=None, alias="userId")
    verification_id: Optional[str] = Field(default=None, alias="verificationId")
    processing_time_ms: Optional[float] = Field(default=None, alias="processingTimeMs")
    timestamp: str = Field(default_factory=utc_now)
