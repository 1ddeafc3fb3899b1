"""
seller_store.py - Seller and verification-record storage.

One JSON document holds every seller and every verification record. With a
path the document is persisted atomically (temp file + os.replace) after
each write; without one the store lives in memory only.

Reputation writes are compare-and-set on `SellerReputation.version`: a
writer that read version N can only commit if the stored version is still
N. A lost race raises `ReputationConflictError` and the caller re-reads.
"""

from __future__ import annotations

import json
import os
import secrets
import string
import tempfile
import threading
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from logging_config import get_logger
from models import (
    Platform,
    Seller,
    SellerReputation,
    VerificationRecord,
    VerificationStatus,
    utc_now,
)

logger = get_logger(__name__)

RECENT_SCORE_LIMIT = 10
SELLER_ID_PREFIX = "SELLER"


class SellerNotFoundError(LookupError):
    """No seller matches the given identifier."""

    def __init__(self, seller_ref: str) -> None:
        super().__init__(f"Seller not found: {seller_ref}")
        self.seller_ref = seller_ref


class DuplicateSellerError(ValueError):
    """A seller with this email is already registered."""


class ReputationConflictError(RuntimeError):
    """The seller's reputation changed between read and write."""

    def __init__(self, seller_id: str, expected: int, found: int) -> None:
        super().__init__(
            f"Reputation of {seller_id} changed concurrently (expected version {expected}, found {found})"
        )
        self.seller_id = seller_id
        self.expected = expected
        self.found = found


class StoreState(BaseModel):
    """Persisted document."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    sellers: dict[str, Seller] = Field(default_factory=dict)
    verifications: list[VerificationRecord] = Field(default_factory=list)
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")


def generate_seller_id() -> str:
    """Public seller id like SELLER-K7Q-482."""
    alphabet = string.ascii_uppercase + string.digits
    letters = "".join(secrets.choice(alphabet) for _ in range(3))
    number = 100 + secrets.randbelow(900)
    return f"{SELLER_ID_PREFIX}-{letters}-{number}"


class SellerStore:
    """Thread-safe seller/verification store with optional JSON persistence."""

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path).resolve() if path else None
        self._lock = threading.RLock()
        self._state = self._load()

    @classmethod
    def from_env(cls) -> "SellerStore":
        return cls(os.getenv("SELLER_STORE_FILE", "data/sellers.json"))

    # -- persistence --

    def _load(self) -> StoreState:
        if self.path is None or not self.path.exists():
            return StoreState()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return StoreState.model_validate(raw)
        except Exception as exc:
            logger.warning(
                "store_load_warning | path=%s | error_type=%s | error=%s | fallback='empty store'",
                self.path,
                type(exc).__name__,
                exc,
            )
            return StoreState()

    def _commit(self, candidate: StoreState) -> None:
        """Persist `candidate`, then make it the live state. Caller holds the lock.

        If the write fails the exception propagates and the live state is
        left exactly as it was.
        """
        candidate.updated_at = utc_now()
        if self.path is not None:
            self._write(candidate)
        self._state = candidate

    def _write(self, state: StoreState) -> None:
        """Write the whole document atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = state.model_dump(mode="json", by_alias=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(self.path.parent),
            delete=False,
            suffix=".tmp",
            prefix="sellers-",
        ) as tmp_file:
            tmp_path = Path(tmp_file.name)
            try:
                json.dump(payload, tmp_file, ensure_ascii=False, indent=2)
                tmp_file.flush()
                os.fsync(tmp_file.fileno())
            except Exception:
                tmp_file.close()
                tmp_path.unlink(missing_ok=True)
                raise

        try:
            os.replace(tmp_path, self.path)
        except OSError:
            tmp_path.unlink(missing_ok=True)
            raise

    def _with_seller(self, seller: Seller) -> StoreState:
        return self._state.model_copy(update={"sellers": {**self._state.sellers, seller.seller_id: seller}})

    def reset(self) -> None:
        """Forget everything and remove the persisted file."""
        with self._lock:
            self._state = StoreState()
            if self.path is not None and self.path.exists():
                self.path.unlink()

    # -- sellers --

    def register_seller(
        self,
        name: str,
        email: str,
        platform: Platform | str = Platform.OTHER,
        phone: Optional[str] = None,
    ) -> Seller:
        """Create a new seller with an unset trust score."""
        with self._lock:
            normalized_email = str(email or "").strip().lower()
            if any(s.email == normalized_email for s in self._state.sellers.values()):
                raise DuplicateSellerError(f"Seller with this email already exists: {normalized_email}")

            seller_id = generate_seller_id()
            while seller_id in self._state.sellers:
                seller_id = generate_seller_id()

            seller = Seller(
                seller_id=seller_id,
                name=name,
                email=email,
                phone=phone,
                platform=platform,
            )
            self._commit(self._with_seller(seller))

        logger.info("seller_registered | seller_id=%s | platform=%s", seller.seller_id, seller.platform.value)
        return seller

    def get_seller(self, seller_ref: str) -> Seller:
        """Resolve a seller by public id, then email, then name (case-insensitive)."""
        ref = str(seller_ref or "").strip()
        if not ref:
            raise SellerNotFoundError(ref)

        with self._lock:
            seller = self._state.sellers.get(ref)
            if seller is not None:
                return seller.model_copy(deep=True)

            folded = ref.lower()
            for candidate in self._state.sellers.values():
                if candidate.email == folded or candidate.name.lower() == folded:
                    return candidate.model_copy(deep=True)

        raise SellerNotFoundError(ref)

    def list_sellers(self) -> list[Seller]:
        with self._lock:
            return [seller.model_copy(deep=True) for seller in self._state.sellers.values()]

    def compare_and_set_reputation(
        self,
        seller_id: str,
        reputation: SellerReputation,
        expected_version: int,
    ) -> Seller:
        """Commit a new reputation if nobody else wrote since `expected_version`."""
        with self._lock:
            current = self._state.sellers.get(seller_id)
            if current is None:
                raise SellerNotFoundError(seller_id)

            found = current.reputation.version
            if found != expected_version:
                raise ReputationConflictError(seller_id, expected_version, found)

            committed = SellerReputation.model_validate(
                {**reputation.model_dump(), "version": expected_version + 1}
            )
            updated = current.model_copy(update={"reputation": committed, "updated_at": utc_now()})
            self._commit(self._with_seller(updated))
            return updated.model_copy(deep=True)

    # -- verification records --

    def save_verification(self, record: VerificationRecord) -> VerificationRecord:
        """Insert or replace a verification record (matched by id)."""
        with self._lock:
            verifications = list(self._state.verifications)
            for index, existing in enumerate(verifications):
                if existing.verification_id == record.verification_id:
                    verifications[index] = record
                    break
            else:
                verifications.append(record)
            self._commit(self._state.model_copy(update={"verifications": verifications}))
        return record

    def get_verification(self, verification_id: str) -> Optional[VerificationRecord]:
        with self._lock:
            for record in self._state.verifications:
                if record.verification_id == verification_id:
                    return record.model_copy(deep=True)
        return None

    def verifications_for(self, seller_id: str) -> list[VerificationRecord]:
        """All records of one seller, newest first."""
        with self._lock:
            return [
                record.model_copy(deep=True)
                for record in reversed(self._state.verifications)
                if record.seller_id == seller_id
            ]

    def recent_scores(self, seller_id: str, limit: int = RECENT_SCORE_LIMIT) -> list[int]:
        """Scores of the seller's latest completed verifications, newest first."""
        scores: list[int] = []
        with self._lock:
            for record in reversed(self._state.verifications):
                if len(scores) >= limit:
                    break
                if (
                    record.seller_id == seller_id
                    and record.status != VerificationStatus.PENDING
                    and record.result is not None
                ):
                    scores.append(record.result.overall_score)
        return scores

    def stats(self) -> dict[str, Any]:
        with self._lock:
            completed = [r for r in self._state.verifications if r.result is not None]
            return {
                "sellers": len(self._state.sellers),
                "verifications": len(self._state.verifications),
                "completedVerifications": len(completed),
                "updatedAt": self._state.updated_at,
            }
