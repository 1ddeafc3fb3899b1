"""
compare.py - Field-level promise vs invoice comparison.

Each of the five fields gets its own checker. A checker decides whether the
invoice honours the promise and, if not, builds a `Mismatch` with a
severity and an explanation a buyer can read.

    price               numeric, 0.01 tolerance        -> high
    deliveryCharges     numeric, 0.01 tolerance        -> medium
    deliveryTime        case-insensitive exact text    -> medium
    returnPolicy        duration/zero/category/tokens  -> high
    productDescription  numbers/antonyms/fuzzy tokens  -> low

All functions here are pure and total for validated records. The text
heuristics are an approximation of "same terms", not an oracle.
"""

from __future__ import annotations

from typing import Optional

from rapidfuzz import fuzz

from logging_config import get_logger
from models import FieldName, InvoiceRecord, Mismatch, PromiseRecord, Severity
from normalize import (
    contains_any_phrase,
    contains_word,
    extract_integers,
    format_amount,
    normalize_text,
    tokenize,
)

logger = get_logger(__name__)

# -- Numeric fields --

AMOUNT_TOLERANCE = 0.01
# Differences up to one paisa/cent are rounding noise, not a broken promise.

# -- Return policy heuristics --

ZERO_POLICY_PHRASES = frozenset({"no warranty", "no return", "no refund", "0 month", "0 day"})
# Phrases that mean "there is no policy at all". Matched from a word
# boundary so "0 day" hits "0 days" but not "10 days".
ZERO_POLICY_WORDS = frozenset({"zero", "none"})
# Matched as whole words only, so "nonetheless" is not a zero policy.

WARRANTY_WORDS = frozenset({"warranty", "guarantee", "coverage"})
RETURN_WORDS = frozenset({"return", "refund", "exchange"})

POLICY_TOKEN_THRESHOLD = 0.90
# Share of the smaller token set that must appear verbatim in the other.

# -- Description heuristics --

ANTONYM_PAIRS: tuple[tuple[str, str], ...] = (
    ("replacement", "repair"),
    ("new", "used"),
    ("original", "duplicate"),
    ("warranty", "guarantee"),
    ("free", "paid"),
    ("unlimited", "limited"),
    ("premium", "basic"),
    ("professional", "standard"),
)
# One side saying the first word while the other says the second is a
# different product/service no matter how similar the rest reads.

DESCRIPTION_TOKEN_THRESHOLD = 0.70
# Share of the smaller token set that must fuzzily (substring) match.


def _amount_mismatch(
    field: FieldName,
    label: str,
    promised: float,
    actual: float,
    severity: Severity,
) -> Optional[Mismatch]:
    diff = abs(float(promised) - float(actual))
    logger.debug(
        "compare_amount | field=%s | promised=%.2f | actual=%.2f | diff=%.4f",
        field.value,
        promised,
        actual,
        diff,
    )
    if diff <= AMOUNT_TOLERANCE:
        return None
    return Mismatch(
        field=field,
        promised=promised,
        actual=actual,
        severity=severity,
        explanation=(
            f"{label} mismatch: Promised {format_amount(promised)} "
            f"but invoice shows {format_amount(actual)}"
        ),
    )


def compare_price(promised: float, actual: float) -> Optional[Mismatch]:
    """Price must match within the rounding tolerance."""
    return _amount_mismatch(FieldName.PRICE, "Price", promised, actual, Severity.HIGH)


def compare_delivery_charges(promised: float, actual: float) -> Optional[Mismatch]:
    """Delivery charges must match within the rounding tolerance."""
    return _amount_mismatch(
        FieldName.DELIVERY_CHARGES,
        "Delivery charges",
        promised,
        actual,
        Severity.MEDIUM,
    )


def compare_delivery_time(promised: str, actual: str) -> Optional[Mismatch]:
    """Delivery time text must match exactly, ignoring case only."""
    if str(promised).lower() == str(actual).lower():
        return None
    return Mismatch(
        field=FieldName.DELIVERY_TIME,
        promised=promised,
        actual=actual,
        severity=Severity.MEDIUM,
        explanation=f'Delivery time mismatch: Promised "{promised}" but invoice shows "{actual}"',
    )


def _is_zero_policy(text: str, numbers: list[int]) -> bool:
    return (
        0 in numbers
        or contains_any_phrase(text, ZERO_POLICY_PHRASES)
        or any(contains_word(text, word) for word in ZERO_POLICY_WORDS)
    )


def _policy_category(text: str) -> Optional[str]:
    """'warranty' or 'return' when the text clearly speaks about only one of them."""
    is_warranty = contains_any_phrase(text, WARRANTY_WORDS)
    is_return = contains_any_phrase(text, RETURN_WORDS)
    if is_warranty and not is_return:
        return "warranty"
    if is_return and not is_warranty:
        return "return"
    return None


def check_return_policy(promised: str, actual: str) -> tuple[bool, str]:
    """Decide whether two return/warranty policies describe the same terms.

    Rules, in order:
        1. identical after folding                       -> similar
        2. both carry numbers and the largest differs    -> mismatch
        3. exactly one side is a "zero/no policy"        -> mismatch
        4. one side is warranty-only, other return-only  -> mismatch
        5. <90% of the smaller word set found verbatim   -> mismatch

    Symmetric in its arguments. Returns (similar, reason).
    """
    a = normalize_text(promised)
    b = normalize_text(actual)

    if a == b:
        return True, "identical policy text"

    nums_a = extract_integers(a)
    nums_b = extract_integers(b)
    if nums_a and nums_b and max(nums_a) != max(nums_b):
        return False, f"policy duration differs ({max(nums_a)} vs {max(nums_b)})"

    zero_a = _is_zero_policy(a, nums_a)
    zero_b = _is_zero_policy(b, nums_b)
    if zero_a != zero_b:
        return False, "one side offers no return/warranty at all"

    category_a = _policy_category(a)
    category_b = _policy_category(b)
    if {category_a, category_b} == {"warranty", "return"}:
        return False, f"{category_a} terms vs {category_b} terms"

    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        # Nothing textual to compare; agreeing durations are the only evidence.
        if nums_a and nums_b:
            return True, "same policy duration"
        return False, "policy text has no comparable words"

    smaller = min(len(tokens_a), len(tokens_b))
    overlap = len(tokens_a & tokens_b)
    if overlap >= POLICY_TOKEN_THRESHOLD * smaller - 1e-9:
        return True, f"{overlap}/{smaller} policy words match"
    return False, f"only {overlap}/{smaller} policy words match"


def policies_similar(promised: str, actual: str) -> bool:
    return check_return_policy(promised, actual)[0]


def compare_return_policy(promised: str, actual: str) -> Optional[Mismatch]:
    """Return policy breaches are treated as trust-critical."""
    similar, reason = check_return_policy(promised, actual)
    logger.debug(
        "compare_return_policy | promised=%r | actual=%r | similar=%s | reason=%s",
        promised,
        actual,
        similar,
        reason,
    )
    if similar:
        return None
    return Mismatch(
        field=FieldName.RETURN_POLICY,
        promised=promised,
        actual=actual,
        severity=Severity.HIGH,
        explanation=(
            f'Return policy mismatch: Promised "{promised}" but invoice shows '
            f'"{actual}" ({reason})'
        ),
    )


def _fuzzy_hits(source: set[str], other: set[str]) -> int:
    return sum(1 for word in source if any(word in candidate or candidate in word for candidate in other))


def check_product_description(promised: str, actual: str) -> tuple[bool, str]:
    """Decide whether two product descriptions describe the same item.

    Rules, in order:
        1. identical after folding                           -> similar
        2. different count of numbers, or largest differs    -> mismatch
        3. antonym pair split across the two sides           -> mismatch
        4. <70% of the smaller word set fuzzily matched      -> mismatch

    Returns (similar, reason).
    """
    a = normalize_text(promised)
    b = normalize_text(actual)

    if a == b:
        return True, "identical description"

    nums_a = extract_integers(a)
    nums_b = extract_integers(b)
    if len(nums_a) != len(nums_b):
        return False, "different numeric details"
    if nums_a and max(nums_a) != max(nums_b):
        return False, f"numeric detail differs ({max(nums_a)} vs {max(nums_b)})"

    for first, second in ANTONYM_PAIRS:
        if (contains_word(a, first) and contains_word(b, second)) or (
            contains_word(a, second) and contains_word(b, first)
        ):
            return False, f"'{first}' vs '{second}'"

    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return False, "description has no comparable words"

    if len(tokens_a) < len(tokens_b):
        ratio = _fuzzy_hits(tokens_a, tokens_b) / len(tokens_a)
    elif len(tokens_b) < len(tokens_a):
        ratio = _fuzzy_hits(tokens_b, tokens_a) / len(tokens_b)
    else:
        ratio = max(
            _fuzzy_hits(tokens_a, tokens_b) / len(tokens_a),
            _fuzzy_hits(tokens_b, tokens_a) / len(tokens_b),
        )

    if ratio >= DESCRIPTION_TOKEN_THRESHOLD - 1e-9:
        return True, f"{ratio:.0%} of words match"
    return False, f"only {ratio:.0%} of words match"


def descriptions_similar(promised: str, actual: str) -> bool:
    return check_product_description(promised, actual)[0]


def compare_product_description(promised: str, actual: str) -> Optional[Mismatch]:
    """Description drift is reported but weighs least."""
    similar, reason = check_product_description(promised, actual)
    text_similarity = fuzz.token_set_ratio(normalize_text(promised), normalize_text(actual))
    logger.debug(
        "compare_product_description | similar=%s | reason=%s | token_set_ratio=%.1f",
        similar,
        reason,
        text_similarity,
    )
    if similar:
        return None
    return Mismatch(
        field=FieldName.PRODUCT_DESCRIPTION,
        promised=promised,
        actual=actual,
        severity=Severity.LOW,
        explanation=(
            "Product description differs between promise and invoice "
            f"({reason}; text similarity {text_similarity:.0f}/100)"
        ),
    )


def compare_records(promise: PromiseRecord, invoice: InvoiceRecord) -> list[Mismatch]:
    """Run every field check in the fixed field order."""
    checks = (
        compare_price(promise.price, invoice.price),
        compare_delivery_charges(promise.delivery_charges, invoice.delivery_charges),
        compare_delivery_time(promise.delivery_time, invoice.delivery_time),
        compare_return_policy(promise.return_policy, invoice.return_policy),
        compare_product_description(promise.product_description, invoice.product_description),
    )
    mismatches = [mismatch for mismatch in checks if mismatch is not None]

    logger.info(
        "compare_complete | mismatches=%s | fields=%s",
        len(mismatches),
        [mismatch.field.value for mismatch in mismatches],
    )
    return mismatches
