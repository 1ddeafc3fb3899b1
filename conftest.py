"""
conftest.py - Shared fixtures for the verification test modules.

The baseline order is the headphones purchase used throughout the tests:
every invoice starts as an exact copy of the promise and tests override
only the fields they care about.
"""

from __future__ import annotations

import os
import sys
from typing import Any, Callable

import pytest

# Ensure local imports resolve from project root.
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from models import InvoiceRecord, PromiseRecord

HEADPHONES_PROMISE: dict[str, Any] = {
    "price": 1500,
    "deliveryCharges": 50,
    "deliveryTime": "2-3 days",
    "returnPolicy": "7 days return policy",
    "productDescription": "Wireless Bluetooth Headphones with noise cancellation",
}


@pytest.fixture
def promise() -> PromiseRecord:
    return PromiseRecord.model_validate(HEADPHONES_PROMISE)


@pytest.fixture
def make_invoice() -> Callable[..., InvoiceRecord]:
    """Build an invoice from the baseline promise with camelCase overrides."""

    def _make(**overrides: Any) -> InvoiceRecord:
        return InvoiceRecord.model_validate({**HEADPHONES_PROMISE, **overrides})

    return _make


@pytest.fixture
def make_promise() -> Callable[..., PromiseRecord]:
    def _make(**overrides: Any) -> PromiseRecord:
        return PromiseRecord.model_validate({**HEADPHONES_PROMISE, **overrides})

    return _make


@pytest.fixture(autouse=True)
def _no_external_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer .env settings out of the tests."""
    monkeypatch.delenv("AUDIT_LOG_FILE", raising=False)
    monkeypatch.delenv("OLLAMA_BASE_URL", raising=False)
    monkeypatch.delenv("OLLAMA_MODEL", raising=False)
