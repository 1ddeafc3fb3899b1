"""
main.py - CLI orchestration for the TrustCart verification engine.

This module is orchestration-only:
1. load promise/invoice (JSON files or a CSV batch)
2. verify
3. (submit) update the seller's trust score
4. print
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any

import pandas as pd
from pydantic import ValidationError

from ai_scorer import OllamaScorer
from audit import AuditLog
from explain import format_result_json, format_result_text
from logging_config import get_logger, setup_logging
from models import InvoiceRecord, PromiseRecord, VerificationResult
from normalize import parse_amount
from reputation import trust_score_label
from seller_store import SellerNotFoundError, SellerStore
from trust_service import TrustService
from verify import VerificationEngine

logger = get_logger("trustcart-cli")

RECORD_FIELDS = {
    "price": "price",
    "delivery_charges": "deliveryCharges",
    "delivery_time": "deliveryTime",
    "return_policy": "returnPolicy",
    "product_description": "productDescription",
}
AMOUNT_FIELDS = ("price", "delivery_charges")
REQUIRED_COLUMNS = [f"{side}_{name}" for side in ("promise", "invoice") for name in RECORD_FIELDS]
OPTIONAL_COLUMNS = ["order_id", "invoice_number", "invoice_date"]


def _configure_output_symbols() -> tuple[str, str]:
    """Configure stdout encoding and return safe line/fail symbols."""
    try:
        if hasattr(sys.stdout, "reconfigure"):
            sys.stdout.reconfigure(encoding="utf-8", errors="replace")
    except (AttributeError, OSError, ValueError):
        pass

    try:
        "═✗".encode(sys.stdout.encoding or "utf-8")
        return "═", "✗"
    except (UnicodeEncodeError, LookupError):
        return "=", "X"


BOX_CHAR, FAIL_CHAR = _configure_output_symbols()


def load_record_file(path: str, model: type[PromiseRecord]) -> PromiseRecord:
    """Load a promise or invoice from a JSON file (camelCase or snake_case keys)."""
    record_path = Path(str(path or "").strip())
    if not record_path.is_file():
        raise FileNotFoundError(f"Record file not found: {path}")

    try:
        payload = json.loads(record_path.read_text(encoding="utf-8-sig"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in '{record_path}': {exc}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Expected a JSON object in '{record_path}'")
    return model.model_validate(payload)


def load_verification_batch(csv_path: str) -> pd.DataFrame:
    """Load and validate a CSV of promise_*/invoice_* column pairs."""
    if csv_path is None:
        raise ValueError("csv_path cannot be None")

    csv_path = str(csv_path).strip()
    if not csv_path:
        raise ValueError("csv_path cannot be empty")

    if not os.path.exists(csv_path):
        raise FileNotFoundError(
            f"Batch CSV not found: {csv_path}\n"
            "Provide a valid CSV path with --csv"
        )

    try:
        df = pd.read_csv(csv_path, encoding="utf-8-sig", dtype=str, keep_default_na=False)
    except UnicodeDecodeError:
        logger.warning(
            "csv_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
            csv_path,
        )
        df = pd.read_csv(csv_path, encoding="latin-1", dtype=str, keep_default_na=False)
    except Exception as exc:
        raise ValueError(f"Failed to read CSV '{csv_path}': {exc}") from exc

    # Normalize column names and remove fully empty rows.
    df.columns = [str(col).strip().lower() for col in df.columns]
    df = df.replace("", pd.NA).dropna(how="all").fillna("").copy()

    if df.empty:
        raise ValueError(f"Batch CSV is empty: {csv_path}")

    missing = [column for column in REQUIRED_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(
            f"Batch CSV missing required columns: {missing}\n"
            f"Required: {REQUIRED_COLUMNS}\n"
            f"Found: {list(df.columns)}"
        )

    for optional in OPTIONAL_COLUMNS:
        if optional not in df.columns:
            df[optional] = ""

    for column in df.columns:
        df[column] = df[column].astype(str).str.strip()

    for side in ("promise", "invoice"):
        for name in AMOUNT_FIELDS:
            column = f"{side}_{name}"
            df[column] = df[column].map(parse_amount)

    amount_columns = [f"{side}_{name}" for side in ("promise", "invoice") for name in AMOUNT_FIELDS]
    invalid = df[amount_columns].isna().any(axis=1)
    if invalid.any():
        logger.warning(
            "csv_amount_warning | invalid_amount_rows=%s | fallback='skip row'",
            int(invalid.sum()),
        )
        df = df[~invalid].copy()

    if df.empty:
        raise ValueError(f"Batch CSV has no rows with valid amounts: {csv_path}")

    logger.info("csv_loaded | path=%s | rows=%s | columns=%s", csv_path, len(df), list(df.columns))
    return df


def row_to_records(row: pd.Series) -> tuple[PromiseRecord, InvoiceRecord]:
    promise = PromiseRecord.model_validate({alias: row[f"promise_{name}"] for name, alias in RECORD_FIELDS.items()})
    invoice_payload: dict[str, Any] = {alias: row[f"invoice_{name}"] for name, alias in RECORD_FIELDS.items()}
    invoice_payload["invoiceNumber"] = row.get("invoice_number") or None
    invoice_payload["invoiceDate"] = row.get("invoice_date") or None
    return promise, InvoiceRecord.model_validate(invoice_payload)


def build_engine(use_ai: bool, audit: AuditLog | None = None) -> VerificationEngine:
    scorer = OllamaScorer() if use_ai else None
    return VerificationEngine(external=scorer, audit=audit)


def _print_summary_table(results: list[tuple[str, int | None, int, str]]) -> None:
    """Print a formatted summary table for batch mode results."""
    print(f"\n{BOX_CHAR * 60}")
    print(f"  SUMMARY - {len(results)} verification(s) processed")
    print(f"{BOX_CHAR * 60}")
    print()
    print(f"  {'Order':<25} {'Score':>5} {'Mismatches':>10}  {'Scored by':<12}")
    print(f"  {'─' * 25} {'─' * 5} {'─' * 10}  {'─' * 12}")

    for order, score, mismatch_count, scored_by in results:
        short_order = order[:23] + ".." if len(order) > 25 else order
        score_text = "-" if score is None else str(score)
        print(f"  {short_order:<25} {score_text:>5} {mismatch_count:>10}  {scored_by:<12}")

    scored = [score for _, score, _, _ in results if score is not None]
    if scored:
        print()
        print(f"  Average score: {sum(scored) / len(scored):.1f}/100")
    print()
    print(f"{BOX_CHAR * 60}")


def run_batch(csv_path: str, use_ai: bool = False) -> list[tuple[str, int | None, int, str]]:
    """Verify every row of a batch CSV and print a summary table."""
    df = load_verification_batch(csv_path)
    engine = build_engine(use_ai)

    logger.info("batch_start | rows=%s | csv=%s | ai=%s", len(df), csv_path, use_ai)
    results: list[tuple[str, int | None, int, str]] = []

    for index, (_, row) in enumerate(df.iterrows(), start=1):
        order = row.get("order_id") or f"row-{index}"
        try:
            start = time.time()
            promise, invoice = row_to_records(row)
            result = engine.verify(promise, invoice)
            logger.info(
                "batch_row_complete | order=%s | score=%s | mismatches=%s | duration_s=%.2f",
                order,
                result.overall_score,
                result.mismatch_count,
                time.time() - start,
            )
            results.append((order, result.overall_score, result.mismatch_count, result.scored_by.value))
        except ValidationError as exc:
            logger.error("batch_row_error | order=%s | errors=%s", order, exc.error_count())
            print(f"\n  {FAIL_CHAR} Invalid row {order}: {exc.errors()[0].get('msg', exc)}\n")
            results.append((order, None, 0, "ERROR"))

    _print_summary_table(results)
    failed = sum(1 for _, score, _, _ in results if score is None)
    logger.info("batch_complete | success=%s | failed=%s", len(results) - failed, failed)
    return results


def _service(use_ai: bool) -> TrustService:
    audit = AuditLog()
    return TrustService(SellerStore.from_env(), engine=build_engine(use_ai, audit), audit=audit)


def _print_trust(profile: dict[str, Any]) -> None:
    score = profile["trustScore"]
    print(f"\n{BOX_CHAR * 60}")
    print(f"  {profile['name']} ({profile['sellerId']})")
    print(f"{BOX_CHAR * 60}")
    print(f"  Trust score:   {'-' if score is None else score}/100 ({trust_score_label(score)})")
    print(f"  Verifications: {profile['successfulVerifications']}/{profile['totalVerifications']} successful")
    if "trend" in profile:
        print(f"  Trend:         {profile['trend']}")
    print(f"{BOX_CHAR * 60}\n")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for TrustCart."""
    parser = argparse.ArgumentParser(
        prog="trustcart",
        description=(
            "TrustCart Verification Engine\n"
            "Compares what a seller promised with what the invoice shows "
            "and tracks each seller's trust score."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s verify --promise promise.json --invoice invoice.json\n"
            "  %(prog)s batch --csv orders.csv\n"
            "  %(prog)s register --name 'Asha Traders' --email asha@example.com --platform instagram\n"
            "  %(prog)s submit --seller SELLER-ABC-123 --buyer b@example.com --promise p.json --invoice i.json\n"
            "  %(prog)s trust-score --seller SELLER-ABC-123\n"
        ),
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose (DEBUG-level) logging")
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs as JSON lines (for production/log aggregation)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    verify_cmd = commands.add_parser("verify", help="Verify one promise/invoice pair")
    verify_cmd.add_argument("--promise", "-p", required=True, help="Promise JSON file")
    verify_cmd.add_argument("--invoice", "-i", required=True, help="Invoice JSON file")
    verify_cmd.add_argument("--json", action="store_true", help="Output the result as JSON")
    verify_cmd.add_argument("--ai", action="store_true", help="Try the Ollama scorer first")

    batch_cmd = commands.add_parser("batch", help="Verify every row of a promise/invoice CSV")
    batch_cmd.add_argument("--csv", "-c", required=True, help="CSV with promise_* and invoice_* columns")
    batch_cmd.add_argument("--ai", action="store_true", help="Try the Ollama scorer first")

    register_cmd = commands.add_parser("register", help="Register a seller")
    register_cmd.add_argument("--name", required=True)
    register_cmd.add_argument("--email", required=True)
    register_cmd.add_argument("--platform", default="other", choices=["whatsapp", "instagram", "facebook", "other"])
    register_cmd.add_argument("--phone", default=None)

    submit_cmd = commands.add_parser("submit", help="Verify a purchase and update the seller's trust score")
    submit_cmd.add_argument("--seller", "-s", required=True, help="Seller id, email or name")
    submit_cmd.add_argument("--buyer", "-b", required=True, help="Buyer email")
    submit_cmd.add_argument("--promise", "-p", required=True, help="Promise JSON file")
    submit_cmd.add_argument("--invoice", "-i", required=True, help="Invoice JSON file")
    submit_cmd.add_argument("--json", action="store_true", help="Output the receipt as JSON")
    submit_cmd.add_argument("--ai", action="store_true", help="Try the Ollama scorer first")

    trust_cmd = commands.add_parser("trust-score", help="Show a seller's trust score")
    trust_cmd.add_argument("--seller", "-s", required=True, help="Seller id, email or name")
    trust_cmd.add_argument("--json", action="store_true", help="Output the profile as JSON")

    args = parser.parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else None,
        json_format=args.log_json,
    )
    logger.info("cli_mode | command=%s", args.command)

    try:
        if args.command == "verify":
            promise = load_record_file(args.promise, PromiseRecord)
            invoice = load_record_file(args.invoice, InvoiceRecord)
            result = build_engine(args.ai).verify(promise, invoice)
            if args.json:
                print(json.dumps(format_result_json(result), indent=2, ensure_ascii=False))
            else:
                print(format_result_text(result))
                print(result.analysis)

        elif args.command == "batch":
            run_batch(args.csv, use_ai=args.ai)

        elif args.command == "register":
            seller = _service(False).register_seller(
                name=args.name,
                email=args.email,
                platform=args.platform,
                phone=args.phone,
            )
            print(f"Registered {seller.name} as {seller.seller_id}")

        elif args.command == "submit":
            promise = load_record_file(args.promise, PromiseRecord)
            invoice = load_record_file(args.invoice, InvoiceRecord)
            receipt = _service(args.ai).submit_verification(args.seller, args.buyer, promise, invoice)
            if args.json:
                print(json.dumps(receipt, indent=2, ensure_ascii=False))
            else:
                print(format_result_text(VerificationResult.model_validate(receipt["result"])))
                print(
                    f"Trust score: {receipt['previousTrustScore']} -> {receipt['trustScore']} "
                    f"({receipt['trustLabel']})"
                )

        elif args.command == "trust-score":
            profile = _service(False).get_public_profile(args.seller)
            if args.json:
                print(json.dumps(profile, indent=2, ensure_ascii=False))
            else:
                _print_trust(profile)

    except SellerNotFoundError as exc:
        logger.error("cli_error | type=SellerNotFoundError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except FileNotFoundError as exc:
        logger.error("cli_error | type=FileNotFoundError | error=%s", exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except ValueError as exc:
        # pydantic.ValidationError is a ValueError subclass.
        logger.error("cli_error | type=%s | error=%s", type(exc).__name__, exc)
        print(f"\nError: {exc}")
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(130)
    except Exception as exc:
        logger.error(
            "cli_error | type=%s | error=%s",
            type(exc).__name__,
            exc,
            exc_info=True,
        )
        print(f"\nUnexpected error: {exc}")
        print("Run with --verbose for full traceback.")
        raise SystemExit(1) from exc


if __name__ == "__main__":
    main()
