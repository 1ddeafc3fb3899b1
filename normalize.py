"""
normalize.py - Text and value normalization shared by the comparator.

Core helpers:
    normalize_text(text)        -> lowercased, trimmed, whitespace-collapsed
    extract_integers(text)      -> every embedded integer, in order
    tokenize(text)              -> set of words longer than 2 characters
    contains_word(text, word)   -> whole-word containment test
    starts_word(text, phrase)   -> phrase starting at a word boundary
    parse_amount(value)         -> non-negative float or None
    normalize_date(value)       -> ISO YYYY-MM-DD or ""
    format_amount(value)        -> display string with currency symbol

Design principles:
    - SAME normalization on BOTH sides of a comparison
    - Pure transformations, never raise for str/number input
    - Invalid input degrades to neutral values (empty string, empty set, None)
"""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Any

from dateutil import parser as dateparser

from logging_config import get_logger

logger = get_logger(__name__)

CURRENCY_SYMBOL = "₹"
MIN_TOKEN_LENGTH = 3

_INTEGER_RE = re.compile(r"\d{1,18}")
# Long digit runs (serial numbers) are read in 18-digit chunks.
_WORD_RE = re.compile(r"[^\W_]+", flags=re.UNICODE)
_CURRENCY_CHARS = ("₹", "$", "€", "£", "¥", "rs.", "rs", "inr")
_NULL_TOKENS = {"", "n/a", "na", "none", "null", "unknown", "nan"}


def normalize_text(text: Any) -> str:
    """Fold text for comparison: NFKC, lowercase, trim, collapse whitespace."""
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    folded = unicodedata.normalize("NFKC", text).lower().strip()
    return re.sub(r"\s+", " ", folded)


def extract_integers(text: Any) -> list[int]:
    """Return every embedded integer in reading order.

    "7 days return, 1 year warranty" -> [7, 1]
    """
    return [int(match) for match in _INTEGER_RE.findall(normalize_text(text))]


def tokenize(text: Any, min_length: int = MIN_TOKEN_LENGTH) -> set[str]:
    """Split text into a set of words at least `min_length` characters long."""
    return {word for word in _WORD_RE.findall(normalize_text(text)) if len(word) >= min_length}


def contains_word(text: Any, word: str) -> bool:
    """Whole-word containment, so 'limited' does not fire inside 'unlimited'."""
    pattern = r"(?<![^\W_])" + re.escape(word.lower()) + r"(?![^\W_])"
    return re.search(pattern, normalize_text(text)) is not None


def starts_word(text: Any, phrase: str) -> bool:
    """Phrase starts at a word boundary; the tail may run on ('0 day' hits '0 days', not '10 days')."""
    pattern = r"(?<![^\W_])" + re.escape(normalize_text(phrase))
    return re.search(pattern, normalize_text(text)) is not None


def contains_any_phrase(text: Any, phrases: frozenset[str] | set[str]) -> bool:
    return any(starts_word(text, phrase) for phrase in phrases)


def parse_amount(value: Any) -> float | None:
    """Parse a money value into a non-negative 2-decimal float.

    Returns None for missing, unparseable, non-finite or negative input so
    the caller can reject the record at the boundary.
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        cleaned = str(value).strip().lower()
        if cleaned in _NULL_TOKENS:
            return None
        for symbol in _CURRENCY_CHARS:
            cleaned = cleaned.replace(symbol, "")
        cleaned = cleaned.replace(",", "").strip()
        try:
            number = float(cleaned)
        except ValueError:
            logger.warning("parse_amount | parse_failed | raw=%r | fallback=None", value)
            return None

    if not math.isfinite(number):
        logger.warning("parse_amount | non_finite=%r | fallback=None", value)
        return None
    if number < 0:
        logger.warning("parse_amount | negative=%r | fallback=None", value)
        return None
    return round(number, 2)


def normalize_date(value: Any) -> str:
    """Normalize free-text date into ISO YYYY-MM-DD, or "" when unusable."""
    if value is None:
        return ""
    if hasattr(value, "strftime"):
        return value.strftime("%Y-%m-%d")

    text = str(value).strip()
    if text.lower() in _NULL_TOKENS:
        return ""
    if not any(char.isdigit() for char in text):
        logger.debug("normalize_date | rejected_no_digits | raw=%r", text)
        return ""

    try:
        parsed = dateparser.parse(text, dayfirst=True)
    except (ValueError, TypeError, OverflowError) as exc:
        logger.warning(
            "normalize_date | parse_error=%s | raw=%r | fallback=''",
            type(exc).__name__,
            text,
        )
        return ""

    if parsed is None:
        return ""
    return parsed.strftime("%Y-%m-%d")


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positive scores (72.5 -> 73), unlike round()."""
    return int(math.floor(float(value) + 0.5))


def clamp_score(value: Any, low: int = 0, high: int = 100) -> int:
    """Round a score half-up and clamp it into [low, high]."""
    return max(low, min(high, round_half_up(value)))


def format_amount(value: float) -> str:
    """Render a money value the way the analysis text shows it: ₹1500 or ₹1499.50."""
    number = float(value)
    if number.is_integer():
        return f"{CURRENCY_SYMBOL}{int(number)}"
    return f"{CURRENCY_SYMBOL}{number:.2f}"
