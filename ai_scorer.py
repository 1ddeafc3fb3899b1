"""
ai_scorer.py - Optional LLM-backed scorer (Ollama + Mistral by default).

Pipeline role:
- It is the only module that knows anything about the Ollama HTTP API.
- It returns the same `VerificationResult` the rule-based path returns, so
  verify.py can swap one for the other without the caller noticing.

Design notes:
- Every network call is bounded: a short liveness probe (GET /api/tags,
  3 s) and the analysis call (POST /api/generate, 30 s). httpx aborts the
  request when the timeout fires.
- Transport and envelope problems raise `ScorerUnavailableError`; verify.py
  turns that into the deterministic fallback.
- Model output is parsed leniently. If no JSON object can be recovered
  the result degrades to a neutral score of 50 with the raw text kept as
  the analysis.
"""

from __future__ import annotations

import json
import math
import os
import re
from typing import Any, Optional

import httpx
from dotenv import load_dotenv
from pydantic import ValidationError

from logging_config import get_logger
from models import FIELD_ORDER, InvoiceRecord, Mismatch, PromiseRecord, ScoringSource, VerificationResult
from normalize import format_amount

logger = get_logger(__name__)

try:
    load_dotenv()
except UnicodeDecodeError:
    # Fallback for legacy Windows-encoded .env files.
    load_dotenv(encoding="cp1252")

# -- Configuration --

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "mistral:latest"

PROBE_TIMEOUT_SECONDS = 3.0
REQUEST_TIMEOUT_SECONDS = 30.0

# Score reported when the model answered but gave no usable verdict.
NEUTRAL_SCORE = 50

GENERATION_OPTIONS = {"temperature": 0.1, "top_p": 0.9}

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")

SYSTEM_PROMPT = """You are TrustCart AI, an expert verification system for e-commerce transactions.
Your job is to compare seller promises with actual invoice data and detect mismatches.

CRITICAL ANALYSIS RULES:
1. Compare each field exactly: price, delivery charges, delivery time, return policy, product description
2. Flag ANY differences, no matter how small
3. Pay special attention to:
   - Numeric differences (even 1 rupee matters)
   - Policy changes (5 days vs 0 days return is CRITICAL)
   - Product description changes (replacement vs repair is MAJOR)
   - Hidden charges or fees
4. Rate severity: HIGH (price, return policy), MEDIUM (delivery), LOW (minor description)
5. Be strict - trust is earned through consistency

Respond in this JSON format:
{
  "mismatches": [
    {
      "field": "price|deliveryCharges|deliveryTime|returnPolicy|productDescription",
      "promised": "value",
      "actual": "value",
      "severity": "high|medium|low",
      "explanation": "detailed explanation"
    }
  ],
  "overallScore": number_0_to_100,
  "analysis": "detailed analysis with recommendations"
}"""


class ScorerUnavailableError(RuntimeError):
    """The external scorer could not produce a response (down, timeout, bad envelope)."""


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _record_block(title: str, record: PromiseRecord) -> str:
    return (
        f"{title}:\n"
        f"Price: {format_amount(record.price)}\n"
        f"Delivery Charges: {format_amount(record.delivery_charges)}\n"
        f"Delivery Time: {record.delivery_time}\n"
        f"Return Policy: {record.return_policy}\n"
        f"Product Description: {record.product_description}"
    )


def build_prompt(promise: PromiseRecord, invoice: InvoiceRecord) -> str:
    """Render the full prompt sent to the model."""
    user_prompt = (
        _record_block("SELLER PROMISE", promise)
        + "\n\n"
        + _record_block("ACTUAL INVOICE", invoice)
        + "\n\nAnalyze these for mismatches and provide verification results."
    )
    return f"{SYSTEM_PROMPT}\n\nUSER: {user_prompt}"


def _neutral_result(raw: str) -> VerificationResult:
    return VerificationResult(
        mismatches=[],
        overall_score=NEUTRAL_SCORE,
        analysis=raw or "AI scorer returned an empty response.",
        scored_by=ScoringSource.AI_UNPARSED,
    )


def _coerce_score(value: Any) -> int | float:
    if isinstance(value, bool) or value is None:
        return NEUTRAL_SCORE
    if isinstance(value, str):
        try:
            value = float(value.strip().rstrip("%"))
        except ValueError:
            return NEUTRAL_SCORE
    if isinstance(value, int):
        # Clamp before any float conversion; huge ints overflow float().
        return max(0, min(100, value))
    if not isinstance(value, float) or not math.isfinite(value):
        return NEUTRAL_SCORE
    return value


def _coerce_mismatches(items: Any) -> list[Mismatch]:
    if not isinstance(items, list):
        return []

    by_field: dict[Any, Mismatch] = {}
    for item in items:
        if not isinstance(item, dict):
            continue
        candidate = dict(item)
        candidate.setdefault("explanation", f"{candidate.get('field', 'Field')} reported as mismatched")
        try:
            mismatch = Mismatch.model_validate(candidate)
        except ValidationError as exc:
            logger.warning(
                "ai_parse_mismatch_dropped | field=%r | errors=%s",
                item.get("field"),
                exc.error_count(),
            )
            continue
        by_field.setdefault(mismatch.field, mismatch)

    return [by_field[field] for field in FIELD_ORDER if field in by_field]


def parse_scorer_response(raw: str) -> VerificationResult:
    """Recover a VerificationResult from free model text.

    Never raises. Shape deviations degrade field by field: bad mismatch
    entries are dropped, a bad score becomes the neutral score, a missing
    analysis keeps the raw text.
    """
    text = raw or ""
    match = _JSON_OBJECT_RE.search(text)
    if not match:
        logger.warning("ai_parse_warning | reason=no_json_object | fallback=neutral_score")
        return _neutral_result(text)

    try:
        payload = json.loads(match.group(0))
    except (ValueError, RecursionError) as exc:
        logger.warning(
            "ai_parse_warning | reason=json_decode | error=%s | fallback=neutral_score",
            exc,
        )
        return _neutral_result(text)

    if not isinstance(payload, dict):
        return _neutral_result(text)

    analysis = payload.get("analysis")
    if not isinstance(analysis, str) or not analysis.strip():
        analysis = text

    return VerificationResult(
        mismatches=_coerce_mismatches(payload.get("mismatches")),
        overall_score=_coerce_score(payload.get("overallScore")),
        analysis=analysis,
        scored_by=ScoringSource.AI,
    )


class OllamaScorer:
    """External scorer backed by an Ollama server.

    Args:
        base_url: Ollama server root. Defaults to OLLAMA_BASE_URL.
        model: Model tag. Defaults to OLLAMA_MODEL.
        probe_timeout: Seconds allowed for the liveness probe.
        request_timeout: Seconds allowed for the analysis call.
        client: Optional pre-built httpx.Client (tests inject a MockTransport).
    """

    name = "ollama"

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        probe_timeout: float = PROBE_TIMEOUT_SECONDS,
        request_timeout: float = REQUEST_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = (base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_BASE_URL).rstrip("/")
        self.model = model or os.getenv("OLLAMA_MODEL") or DEFAULT_MODEL
        self.probe_timeout = probe_timeout
        self.request_timeout = request_timeout
        self._client = client or httpx.Client()

    @classmethod
    def from_env(cls) -> Optional["OllamaScorer"]:
        """Build a scorer unless AI_SCORER_ENABLED switches it off."""
        if not _env_flag("AI_SCORER_ENABLED", True):
            logger.info("ai_scorer_disabled | env=AI_SCORER_ENABLED")
            return None
        return cls()

    def close(self) -> None:
        self._client.close()

    def is_available(self) -> bool:
        """Liveness probe. Any failure, including a timeout, means unavailable."""
        try:
            response = self._client.get(f"{self.base_url}/api/tags", timeout=self.probe_timeout)
        except httpx.HTTPError as exc:
            logger.info(
                "ai_probe_failed | url=%s | error_type=%s | error=%s",
                self.base_url,
                type(exc).__name__,
                exc,
            )
            return False

        if not response.is_success:
            logger.info("ai_probe_failed | url=%s | status=%s", self.base_url, response.status_code)
            return False
        return True

    def status(self) -> dict[str, Any]:
        """Probe plus model presence check, for the status endpoint."""
        try:
            response = self._client.get(f"{self.base_url}/api/tags", timeout=self.probe_timeout)
            response.raise_for_status()
            models = response.json().get("models") or []
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            return {
                "isRunning": False,
                "hasModel": False,
                "model": self.model,
                "error": f"{type(exc).__name__}: {exc}",
            }

        family = self.model.split(":", 1)[0]
        has_model = any(
            isinstance(entry, dict)
            and (entry.get("name") == self.model or str(entry.get("name", "")).startswith(family))
            for entry in models
        )
        return {"isRunning": True, "hasModel": has_model, "model": self.model, "error": None}

    def generate(self, promise: PromiseRecord, invoice: InvoiceRecord) -> str:
        """Ask the model for a verdict and return its raw text."""
        body = {
            "model": self.model,
            "prompt": build_prompt(promise, invoice),
            "stream": False,
            "options": GENERATION_OPTIONS,
        }
        try:
            response = self._client.post(
                f"{self.base_url}/api/generate",
                json=body,
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            envelope = response.json()
        except httpx.TimeoutException as exc:
            raise ScorerUnavailableError(f"AI scorer timed out after {self.request_timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 404:
                raise ScorerUnavailableError(
                    f"Model '{self.model}' not found. Run: ollama pull {self.model}"
                ) from exc
            raise ScorerUnavailableError(f"AI scorer returned HTTP {status}") from exc
        except httpx.HTTPError as exc:
            raise ScorerUnavailableError(f"AI scorer unreachable: {exc}") from exc
        except ValueError as exc:
            raise ScorerUnavailableError("AI scorer returned a non-JSON envelope") from exc

        raw = envelope.get("response") if isinstance(envelope, dict) else None
        if not isinstance(raw, str):
            raise ScorerUnavailableError("AI scorer envelope has no 'response' text")
        return raw

    def score(self, promise: PromiseRecord, invoice: InvoiceRecord) -> VerificationResult:
        raw = self.generate(promise, invoice)
        logger.debug("ai_raw_response | chars=%s | head=%r", len(raw), raw[:200])
        return parse_scorer_response(raw)
