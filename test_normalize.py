"""
test_normalize.py - Normalization helper tests

Covers:
- normalize_text / extract_integers / tokenize
- whole-word and word-start matching
- parse_amount / normalize_date
- round_half_up / clamp_score / format_amount

Usage: pytest test_normalize.py
"""

from __future__ import annotations

import math

import pytest

from normalize import (
    clamp_score,
    contains_word,
    extract_integers,
    format_amount,
    normalize_date,
    normalize_text,
    parse_amount,
    round_half_up,
    starts_word,
    tokenize,
)


def test_normalize_text_folds_case_and_whitespace() -> None:
    assert normalize_text("  7 Days   RETURN\tPolicy ") == "7 days return policy"
    assert normalize_text(None) == ""
    assert normalize_text(1500) == "1500"


def test_extract_integers_keeps_reading_order() -> None:
    assert extract_integers("7 days return, 1 year warranty") == [7, 1]
    assert extract_integers("no numbers here") == []
    assert extract_integers("128GB / 8GB RAM") == [128, 8]


def test_extract_integers_chunks_very_long_digit_runs() -> None:
    numbers = extract_integers("Serial " + "9" * 5000)
    assert len(numbers) == 278
    assert max(numbers) == 999_999_999_999_999_999


def test_tokenize_drops_short_words() -> None:
    assert tokenize("Phone for a 1 year repair") == {"phone", "for", "year", "repair"}
    assert tokenize("") == set()
    assert tokenize("a an of") == set()


def test_contains_word_requires_whole_word() -> None:
    assert contains_word("Unlimited data plan", "unlimited")
    assert not contains_word("Unlimited data plan", "limited")
    assert contains_word("limited edition", "limited")


def test_starts_word_allows_trailing_text_only() -> None:
    assert starts_word("0 days return", "0 day")
    assert not starts_word("10 days return", "0 day")
    assert starts_word("No returns accepted", "no return")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (1500, 1500.0),
        ("1,499.50", 1499.5),
        ("₹ 2,000", 2000.0),
        ("Rs. 350", 350.0),
        ("$12.50", 12.5),
        ("0", 0.0),
    ],
)
def test_parse_amount_accepts_common_formats(raw: object, expected: float) -> None:
    assert parse_amount(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", [None, "", "n/a", "abc", "-5", -1, float("nan"), float("inf"), True])
def test_parse_amount_rejects_invalid(raw: object) -> None:
    assert parse_amount(raw) is None


def test_normalize_date_day_first() -> None:
    assert normalize_date("05/03/2024") == "2024-03-05"
    assert normalize_date("2024-03-05") == "2024-03-05"
    assert normalize_date("March 5, 2024") == "2024-03-05"


@pytest.mark.parametrize("raw", [None, "", "unknown", "yesterday", "99/99/9999"])
def test_normalize_date_unusable_input(raw: object) -> None:
    assert normalize_date(raw) == ""


def test_round_half_up_differs_from_bankers_rounding() -> None:
    assert round_half_up(72.5) == 73
    assert round_half_up(81.96) == 82
    assert round_half_up(0.49) == 0
    assert round(72.5) == 72


def test_clamp_score_bounds() -> None:
    assert clamp_score(-135) == 0
    assert clamp_score(130) == 100
    assert clamp_score(69.5) == 70
    assert math.isclose(clamp_score(5), 5)


def test_format_amount() -> None:
    assert format_amount(1500) == "₹1500"
    assert format_amount(1499.5) == "₹1499.50"
    assert format_amount(0) == "₹0"
