"""
test_ai_scorer.py - External (Ollama) scorer tests

All HTTP traffic goes through httpx.MockTransport; no server is needed.

Covers:
- liveness probe success / failure / timeout
- generate error mapping (timeout, 404, bad envelope)
- parsing of malformed model output
- status() model detection and AI_SCORER_ENABLED

Usage: pytest test_ai_scorer.py
"""

from __future__ import annotations

import json
from typing import Callable

import httpx
import pytest

from ai_scorer import (
    NEUTRAL_SCORE,
    OllamaScorer,
    ScorerUnavailableError,
    build_prompt,
    parse_scorer_response,
)
from models import FieldName, ScoringSource, Severity

Handler = Callable[[httpx.Request], httpx.Response]


def _scorer(handler: Handler) -> OllamaScorer:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return OllamaScorer(base_url="http://ollama.test", model="mistral:latest", client=client)


def _tags_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"models": [{"name": "mistral:latest"}]})


def test_probe_success() -> None:
    assert _scorer(_tags_ok).is_available()


def test_probe_connection_error_means_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert not _scorer(handler).is_available()


def test_probe_timeout_means_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    assert not _scorer(handler).is_available()


def test_probe_server_error_means_unavailable() -> None:
    assert not _scorer(lambda request: httpx.Response(503)).is_available()


def test_generate_timeout_raises_unavailable(promise, make_invoice) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/generate":
            raise httpx.ReadTimeout("read timed out", request=request)
        return _tags_ok(request)

    with pytest.raises(ScorerUnavailableError, match="timed out"):
        _scorer(handler).score(promise, make_invoice())


def test_generate_missing_model_mentions_pull(promise, make_invoice) -> None:
    with pytest.raises(ScorerUnavailableError, match="ollama pull mistral:latest"):
        _scorer(lambda request: httpx.Response(404)).generate(promise, make_invoice())


def test_generate_envelope_without_response_text(promise, make_invoice) -> None:
    with pytest.raises(ScorerUnavailableError, match="no 'response'"):
        _scorer(lambda request: httpx.Response(200, json={"done": True})).generate(promise, make_invoice())


def test_generate_sends_non_streaming_low_temperature_request(promise, make_invoice) -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        return httpx.Response(200, json={"response": "{}"})

    _scorer(handler).generate(promise, make_invoice())
    assert seen["model"] == "mistral:latest"
    assert seen["stream"] is False
    assert seen["options"]["temperature"] == 0.1
    assert "SELLER PROMISE:" in seen["prompt"]


def test_score_parses_model_json(promise, make_invoice) -> None:
    verdict = {
        "mismatches": [
            {
                "field": "price",
                "promised": 1500,
                "actual": 1600,
                "severity": "HIGH",
                "explanation": "Charged ₹100 more",
            }
        ],
        "overallScore": 30,
        "analysis": "Price was raised after the sale.",
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"response": "Here is my verdict:\n" + json.dumps(verdict)})

    result = _scorer(handler).score(promise, make_invoice(price=1600))
    assert result.scored_by == ScoringSource.AI
    assert result.overall_score == 30
    assert result.analysis == "Price was raised after the sale."
    assert [(m.field, m.severity) for m in result.mismatches] == [(FieldName.PRICE, Severity.HIGH)]


def test_parse_without_json_gives_neutral_score() -> None:
    result = parse_scorer_response("I could not decide, sorry.")
    assert result.overall_score == NEUTRAL_SCORE
    assert result.scored_by == ScoringSource.AI_UNPARSED
    assert result.analysis == "I could not decide, sorry."
    assert result.mismatches == []


def test_parse_broken_json_gives_neutral_score() -> None:
    result = parse_scorer_response("{overallScore: high}")
    assert result.overall_score == NEUTRAL_SCORE
    assert result.scored_by == ScoringSource.AI_UNPARSED


def test_parse_clamps_out_of_range_score() -> None:
    assert parse_scorer_response('{"overallScore": 130}').overall_score == 100
    assert parse_scorer_response('{"overallScore": -20}').overall_score == 0
    assert parse_scorer_response('{"overallScore": "72.5%"}').overall_score == 73


def test_parse_huge_integer_score_is_clamped() -> None:
    assert parse_scorer_response('{"overallScore": 1' + "0" * 400 + "}").overall_score == 100
    assert parse_scorer_response('{"overallScore": -1' + "0" * 400 + "}").overall_score == 0


def test_parse_score_too_long_to_decode_is_neutral() -> None:
    result = parse_scorer_response('{"overallScore": 1' + "0" * 5000 + "}")
    assert result.overall_score == NEUTRAL_SCORE
    assert result.scored_by == ScoringSource.AI_UNPARSED


def test_parse_non_numeric_score_is_neutral() -> None:
    result = parse_scorer_response('{"overallScore": "excellent", "analysis": "ok"}')
    assert result.overall_score == NEUTRAL_SCORE
    assert result.scored_by == ScoringSource.AI


def test_parse_normalizes_and_filters_mismatches() -> None:
    raw = json.dumps(
        {
            "mismatches": [
                {"field": "product_description", "promised": "a", "actual": "b", "severity": "low"},
                {"field": "Delivery Charges", "promised": 0, "actual": 99, "severity": "Medium", "explanation": "fee"},
                {"field": "colour", "promised": "red", "actual": "blue", "severity": "low", "explanation": "x"},
                {"field": "deliveryCharges", "promised": 0, "actual": 50, "severity": "medium", "explanation": "dup"},
                "not an object",
            ],
            "overallScore": 55,
        }
    )
    result = parse_scorer_response(raw)
    assert [m.field for m in result.mismatches] == [FieldName.DELIVERY_CHARGES, FieldName.PRODUCT_DESCRIPTION]
    assert result.mismatches[0].explanation == "fee"
    assert result.analysis == raw


def test_status_reports_model_presence() -> None:
    status = _scorer(_tags_ok).status()
    assert status == {"isRunning": True, "hasModel": True, "model": "mistral:latest", "error": None}

    def no_models(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"models": [{"name": "llama3:8b"}]})

    assert _scorer(no_models).status()["hasModel"] is False


def test_status_when_server_down() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    status = _scorer(handler).status()
    assert status["isRunning"] is False
    assert "ConnectError" in status["error"]


def test_from_env_respects_disable_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AI_SCORER_ENABLED", "false")
    assert OllamaScorer.from_env() is None

    monkeypatch.setenv("AI_SCORER_ENABLED", "1")
    monkeypatch.setenv("OLLAMA_BASE_URL", "http://gpu-box:11434/")
    scorer = OllamaScorer.from_env()
    assert scorer is not None
    assert scorer.base_url == "http://gpu-box:11434"
    scorer.close()


def test_build_prompt_shows_both_records(promise, make_invoice) -> None:
    prompt = build_prompt(promise, make_invoice(price=1600))
    assert "Price: ₹1500" in prompt
    assert "Price: ₹1600" in prompt
    assert "ACTUAL INVOICE:" in prompt
