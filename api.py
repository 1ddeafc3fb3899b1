"""
api.py - FastAPI HTTP layer for the TrustCart verification engine.

Routes:
- GET    /health
- GET    /scorer/status
- POST   /sellers
- GET    /sellers
- POST   /verify
- GET    /trust-score/{seller_id}
- GET    /trust-score/public/{seller_id}
- GET    /audit-logs
- DELETE /audit-logs

No comparison or scoring logic lives here; every route delegates to
trust_service.TrustService or the verification engine.
"""

from __future__ import annotations

import os
from typing import Any, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ai_scorer import OllamaScorer
from audit import AuditLog
from explain import format_result_json
from logging_config import get_logger, setup_logging
from models import InvoiceRecord, Platform, PromiseRecord
from seller_store import DuplicateSellerError, ReputationConflictError, SellerNotFoundError, SellerStore
from trust_service import TrustService
from verify import VerificationEngine

logger = get_logger("trustcart-api")

app = FastAPI(
    title="TrustCart Verification API",
    version="1.0.0",
)

# Allows local UI use from file:// or another local host/port.
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


class RegisterSellerRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: Optional[str] = None
    platform: Platform = Platform.OTHER


class VerifyRequest(BaseModel):
    """Promise/invoice pair. With a sellerId the result also updates that seller's trust score."""

    model_config = ConfigDict(populate_by_name=True)

    seller_id: Optional[str] = Field(default=None, alias="sellerId")
    buyer_email: Optional[str] = Field(default=None, alias="buyerEmail")
    promise: PromiseRecord
    invoice: InvoiceRecord


audit_log = AuditLog()
seller_store = SellerStore.from_env()
scorer = OllamaScorer.from_env()
engine = VerificationEngine(external=scorer, audit=audit_log)
service = TrustService(seller_store, engine=engine, audit=audit_log)


@app.exception_handler(SellerNotFoundError)
async def _seller_not_found(_request: Request, exc: SellerNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ReputationConflictError)
async def _reputation_conflict(_request: Request, exc: ReputationConflictError) -> JSONResponse:
    logger.warning("api_conflict | seller_id=%s | error=%s", exc.seller_id, exc)
    return JSONResponse(
        status_code=409,
        content={"detail": "Seller reputation is being updated concurrently. Retry the request."},
    )


@app.get("/health")
def health() -> dict[str, Any]:
    """Service health check."""
    return {"status": "ok", "stats": service.store.stats()}


@app.get("/scorer/status")
def scorer_status() -> dict[str, Any]:
    """Report whether the external AI scorer is configured and reachable."""
    external = service.engine.external
    if external is None:
        return {"enabled": False, "isRunning": False, "hasModel": False, "model": None, "error": None}

    status_fn = getattr(external, "status", None)
    if callable(status_fn):
        return {"enabled": True, **status_fn()}
    return {"enabled": True, "isRunning": external.is_available(), "name": external.name}


@app.post("/sellers", status_code=201)
def register_seller(payload: RegisterSellerRequest) -> dict[str, Any]:
    """Register a seller. The trust score stays unset until the first verification."""
    try:
        seller = service.register_seller(
            name=payload.name,
            email=payload.email,
            platform=payload.platform,
            phone=payload.phone,
        )
    except DuplicateSellerError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except (ValueError, ValidationError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return seller.model_dump(mode="json", by_alias=True)


@app.get("/sellers")
def list_sellers() -> list[dict[str, Any]]:
    return [seller.model_dump(mode="json", by_alias=True) for seller in service.store.list_sellers()]


@app.post("/verify")
def verify_endpoint(payload: VerifyRequest) -> dict[str, Any]:
    """Score a promise/invoice pair, recording it against the seller when one is given."""
    if payload.seller_id is None:
        result = service.engine.verify(payload.promise, payload.invoice, user_id=payload.buyer_email)
        return format_result_json(result)

    if not payload.buyer_email:
        raise HTTPException(status_code=400, detail="buyerEmail is required when sellerId is given.")

    try:
        return service.submit_verification(
            payload.seller_id,
            payload.buyer_email,
            payload.promise,
            payload.invoice,
        )
    except (SellerNotFoundError, ReputationConflictError):
        raise
    except Exception as exc:
        logger.error(
            "api_verify_error | error_type=%s | error=%s",
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        raise HTTPException(
            status_code=500,
            detail="Unexpected server error while processing verification.",
        ) from exc


@app.get("/trust-score/public/{seller_id}")
def public_trust_score(seller_id: str) -> dict[str, Any]:
    """Buyer-facing trust profile with recent-history distribution and trend."""
    return service.get_public_profile(seller_id)


@app.get("/trust-score/{seller_id}")
def trust_score(seller_id: str) -> dict[str, Any]:
    return service.get_trust_score(seller_id)


@app.get("/audit-logs")
def list_audit_logs(
    limit: int = Query(default=20, ge=1, le=100),
    action: Optional[str] = None,
    seller_id: Optional[str] = Query(default=None, alias="sellerId"),
) -> dict[str, Any]:
    events = service.audit.list_events(limit=limit, action=action, seller_id=seller_id)
    return {
        "count": len(events),
        "events": [event.model_dump(mode="json", by_alias=True) for event in events],
    }


@app.delete("/audit-logs")
def purge_audit_logs() -> dict[str, Any]:
    return {"status": "purged", "removed": service.audit.purge()}


if __name__ == "__main__":
    setup_logging()
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("api:app", host="0.0.0.0", port=port, reload=False)
