"""
test_main.py - CLI tests

Covers the verify / batch / register / submit / trust-score commands and
the pandas batch loader.

Usage: pytest test_main.py
"""

from __future__ import annotations

import json
import re
from pathlib import Path

import pytest

import main as cli

PROMISE = {
    "price": 1500,
    "deliveryCharges": 50,
    "deliveryTime": "2-3 days",
    "returnPolicy": "7 days return policy",
    "productDescription": "Wireless Bluetooth Headphones with noise cancellation",
}

BATCH_HEADER = (
    "order_id,promise_price,promise_delivery_charges,promise_delivery_time,promise_return_policy,"
    "promise_product_description,invoice_price,invoice_delivery_charges,invoice_delivery_time,"
    "invoice_return_policy,invoice_product_description,invoice_date\n"
)


def _write_json(path: Path, payload: dict) -> str:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return str(path)


@pytest.fixture
def record_files(tmp_path: Path) -> tuple[str, str]:
    promise = _write_json(tmp_path / "promise.json", PROMISE)
    invoice = _write_json(tmp_path / "invoice.json", {**PROMISE, "returnPolicy": "No returns"})
    return promise, invoice


def test_verify_json_output(record_files, capsys) -> None:
    promise, invoice = record_files
    cli.main(["verify", "--promise", promise, "--invoice", invoice, "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["overallScore"] == 5
    assert payload["mismatches"][0]["field"] == "returnPolicy"


def test_verify_text_output(record_files, capsys) -> None:
    promise, invoice = record_files
    cli.main(["verify", "--promise", promise, "--invoice", invoice])

    out = capsys.readouterr().out
    assert "Trust Score 5/100" in out
    assert "CRITICAL ISSUES:" in out


def test_verify_missing_file_exits_1(tmp_path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["verify", "--promise", str(tmp_path / "nope.json"), "--invoice", str(tmp_path / "nope.json")])
    assert excinfo.value.code == 1


def test_verify_invalid_record_exits_1(tmp_path) -> None:
    promise = _write_json(tmp_path / "promise.json", {**PROMISE, "price": -1})
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["verify", "--promise", promise, "--invoice", promise])
    assert excinfo.value.code == 1


def test_load_verification_batch(tmp_path) -> None:
    csv_path = tmp_path / "orders.csv"
    csv_path.write_text(
        BATCH_HEADER
        + 'A-1,"₹1,500",50,2-3 days,7 days return policy,Headphones,1500,50,2-3 days,7 days return policy,Headphones,05/03/2024\n'
        + "A-2,abc,50,2-3 days,7 days,Headphones,1500,50,2-3 days,7 days,Headphones,\n"
        + ",,,,,,,,,,,\n",
        encoding="utf-8",
    )
    df = cli.load_verification_batch(str(csv_path))

    assert list(df["order_id"]) == ["A-1"]
    assert df.iloc[0]["promise_price"] == 1500.0

    promise, invoice = cli.row_to_records(df.iloc[0])
    assert promise.price == 1500.0
    assert invoice.invoice_date == "2024-03-05"


def test_load_verification_batch_missing_columns(tmp_path) -> None:
    csv_path = tmp_path / "orders.csv"
    csv_path.write_text("promise_price,invoice_price\n1,1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="missing required columns"):
        cli.load_verification_batch(str(csv_path))


def test_load_verification_batch_missing_file(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        cli.load_verification_batch(str(tmp_path / "nope.csv"))


def test_run_batch_summary(tmp_path, capsys) -> None:
    csv_path = tmp_path / "orders.csv"
    csv_path.write_text(
        BATCH_HEADER
        + "A-1,1500,50,2-3 days,7 days return,Headphones,1500,50,2-3 days,7 days return,Headphones,\n"
        + "A-2,1500,50,2-3 days,7 days return,Headphones,1600,50,2-3 days,7 days return,Headphones,\n",
        encoding="utf-8",
    )
    results = cli.run_batch(str(csv_path))

    assert [(order, score) for order, score, _, _ in results] == [("A-1", 100), ("A-2", 30)]
    out = capsys.readouterr().out
    assert "SUMMARY - 2 verification(s) processed" in out
    assert "Average score: 65.0/100" in out


def test_register_submit_and_trust_score(tmp_path, record_files, capsys, monkeypatch) -> None:
    monkeypatch.setenv("SELLER_STORE_FILE", str(tmp_path / "sellers.json"))
    promise, invoice = record_files

    cli.main(["register", "--name", "Asha Traders", "--email", "asha@example.com", "--platform", "whatsapp"])
    seller_id = re.search(r"SELLER-[A-Z0-9]{3}-\d{3}", capsys.readouterr().out).group(0)

    cli.main(["submit", "--seller", seller_id, "--buyer", "b@example.com", "--promise", promise, "--invoice", promise, "--json"])
    receipt = json.loads(capsys.readouterr().out)
    assert receipt["trustScore"] == 100

    cli.main(["submit", "--seller", "asha@example.com", "--buyer", "b@example.com", "--promise", promise, "--invoice", invoice])
    assert "Trust score: 100 -> " in capsys.readouterr().out

    cli.main(["trust-score", "--seller", seller_id, "--json"])
    profile = json.loads(capsys.readouterr().out)
    assert profile["totalVerifications"] == 2
    assert profile["successfulVerifications"] == 1


def test_submit_unknown_seller_exits_1(tmp_path, record_files, monkeypatch) -> None:
    monkeypatch.setenv("SELLER_STORE_FILE", str(tmp_path / "sellers.json"))
    promise, invoice = record_files
    with pytest.raises(SystemExit) as excinfo:
        cli.main(["submit", "--seller", "SELLER-NOP-000", "--buyer", "b@example.com", "--promise", promise, "--invoice", invoice])
    assert excinfo.value.code == 1
