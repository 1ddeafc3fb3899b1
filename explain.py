"""
explain.py - Human-readable and JSON-ready verification formatting.

This module converts mismatches and scores into:
- the `analysis` text stored on every VerificationResult
- terminal-friendly blocks for CLI usage
- machine-friendly dictionaries for the API and the audit log
"""

from __future__ import annotations

from typing import Any

from logging_config import get_logger
from models import FieldName, Mismatch, Severity, VerificationResult
from normalize import format_amount

logger = get_logger(__name__)

PERFECT_MATCH_MESSAGE = (
    "Perfect match! All seller promises align with the invoice. "
    "This seller demonstrates high trustworthiness."
)

SECTION_TITLES: tuple[tuple[Severity, str], ...] = (
    (Severity.HIGH, "CRITICAL ISSUES:"),
    (Severity.MEDIUM, "MODERATE CONCERNS:"),
    (Severity.LOW, "MINOR DISCREPANCIES:"),
)

# (lower bound, band key, verdict line), checked top to bottom.
SCORE_BANDS: tuple[tuple[int, str, str], ...] = (
    (90, "excellent", "EXCELLENT - Minimal discrepancies, highly trustworthy seller"),
    (80, "good", "GOOD - Minor issues detected, generally trustworthy"),
    (70, "fair", "FAIR - Some concerns identified, proceed with caution"),
    (50, "poor", "POOR - Multiple issues detected, high risk transaction"),
    (0, "critical", "CRITICAL - Significant mismatches found, avoid this seller"),
)

RECOMMENDATION = "RECOMMENDATION: Contact seller to clarify discrepancies before proceeding."

FIELD_LABELS: dict[FieldName, str] = {
    FieldName.PRICE: "Price",
    FieldName.DELIVERY_CHARGES: "Delivery Charges",
    FieldName.DELIVERY_TIME: "Delivery Time",
    FieldName.RETURN_POLICY: "Return Policy",
    FieldName.PRODUCT_DESCRIPTION: "Product Description",
}

OUTPUT_WIDTH = 56
SEPARATOR = "=" * OUTPUT_WIDTH


def score_band(score: int) -> tuple[str, str]:
    """Return (band key, verdict line) for a 0-100 score."""
    for lower, key, verdict in SCORE_BANDS:
        if score >= lower:
            return key, verdict
    return SCORE_BANDS[-1][1], SCORE_BANDS[-1][2]


def generate_analysis(mismatches: list[Mismatch], score: int) -> str:
    """Build the analysis text stored with a rule-based result."""
    if not mismatches:
        return PERFECT_MATCH_MESSAGE

    lines: list[str] = [f"Verification completed with {len(mismatches)} mismatch(es) found:", ""]

    for severity, title in SECTION_TITLES:
        group = [m for m in mismatches if m.severity == severity]
        if not group:
            continue
        lines.append(title)
        for mismatch in group:
            lines.append(f"   • {mismatch.explanation}")
        lines.append("")

    lines.append(f"Overall Trust Score: {score}/100")
    lines.append("")
    lines.append(score_band(score)[1])

    if any(m.severity == Severity.HIGH for m in mismatches):
        lines.append("")
        lines.append(RECOMMENDATION)

    return "\n".join(lines)


def _display_value(field: FieldName, value: Any) -> str:
    if field in (FieldName.PRICE, FieldName.DELIVERY_CHARGES) and isinstance(value, (int, float)):
        return format_amount(value)
    return str(value)


def format_result_text(result: VerificationResult | None) -> str:
    """Format a VerificationResult into a terminal block."""
    if result is None:
        logger.error("explain_input_error | result_none=True | fallback=error_block")
        return "\n" + SEPARATOR + "\n  ERROR: No verification result available\n" + SEPARATOR + "\n"

    band_key, verdict = score_band(result.overall_score)
    lines: list[str] = ["", SEPARATOR, f"  Trust Score {result.overall_score}/100 - {band_key.upper()}", SEPARATOR, ""]

    if not result.mismatches:
        lines.append("  No mismatches found.")
    else:
        lines.append("  Mismatches:")
        for mismatch in result.mismatches:
            label = FIELD_LABELS.get(mismatch.field, mismatch.field.value)
            lines.append(
                f"    • [{mismatch.severity.value.upper():<6}] {label}: "
                f"{_display_value(mismatch.field, mismatch.promised)} -> "
                f"{_display_value(mismatch.field, mismatch.actual)}"
            )

    lines.append("")
    lines.append(f"  Verdict: {verdict}")
    lines.append(f"  Scored by: {result.scored_by.value}")
    lines.append("")
    lines.append(SEPARATOR)
    lines.append("")
    return "\n".join(lines)


def format_result_json(result: VerificationResult) -> dict[str, Any]:
    """Structured payload for API responses and audit records."""
    band_key, verdict = score_band(result.overall_score)
    return {
        "mismatches": [m.model_dump(mode="json", by_alias=True) for m in result.mismatches],
        "overallScore": result.overall_score,
        "analysis": result.analysis,
        "scoredBy": result.scored_by.value,
        "band": band_key,
        "verdict": verdict,
        "mismatchCount": result.mismatch_count,
        "hasHighSeverity": result.has_high_severity,
    }
