"""Tests for the append-only CSV transaction ledger."""

from __future__ import annotations

import csv
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from src.models.ledger import TransactionKind, TransactionRecord
from src.notify.ledger import LEDGER_COLUMNS, CsvTransactionLedger
from tests.factories import BOT_WALLET, TARGET_WALLET

NOW = datetime(2026, 3, 14, 9, 26, tzinfo=UTC)


@pytest.fixture
def ledger(tmp_path) -> CsvTransactionLedger:
    return CsvTransactionLedger(tmp_path / "transactions.csv", tmp_path / "backups", retention_days=30)


def _record(kind: TransactionKind = TransactionKind.LEDGER_TRANSFER, **kwargs) -> TransactionRecord:
    defaults = {
        "kind": kind,
        "chain": "ao",
        "from_token": "ARIO",
        "from_amount": Decimal("50000"),
        "to_token": "ARIO",
        "to_amount": Decimal("50000"),
        "from_wallet": BOT_WALLET,
        "to_wallet": TARGET_WALLET,
        "tx_id": "msg-1",
        "timestamp": NOW,
    }
    defaults.update(kwargs)
    return TransactionRecord(**defaults)


def _rows(ledger: CsvTransactionLedger) -> list[dict]:
    with ledger.path.open(newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


class TestFile:
    def test_creates_header(self, ledger):
        ledger.ensure_file()
        assert ledger.path.read_text().splitlines() == [",".join(LEDGER_COLUMNS)]

    def test_existing_file_untouched(self, ledger):
        ledger.append(_record())
        ledger.ensure_file()
        assert len(_rows(ledger)) == 1

    def test_empty_file_gets_header(self, ledger):
        ledger.path.write_text("")
        ledger.ensure_file()
        assert ledger.verify_integrity() == (True, None)


class TestAppend:
    def test_row_fields(self, ledger):
        ledger.append(_record(kind=TransactionKind.SOURCE_SWAP, chain="base", base_tx_hash="0xabc", gas_used=150000))
        row = _rows(ledger)[0]
        assert row["timestamp"] == NOW.isoformat()
        assert row["transaction_type"] == "SOURCE_SWAP"
        assert row["chain"] == "base"
        assert row["from_amount"] == "50000"
        assert row["base_tx_hash"] == "0xabc"
        assert row["gas_used"] == "150000"
        assert row["exchange_rate"] == ""

    def test_commas_and_quotes_escaped(self, ledger):
        ledger.append(_record(notes='retry, "manual"'))
        assert _rows(ledger)[0]["notes"] == 'retry, "manual"'
        assert ledger.verify_integrity() == (True, None)

    def test_appends_accumulate(self, ledger):
        for i in range(3):
            ledger.append(_record(tx_id=f"msg-{i}"))
        assert [r["tx_id"] for r in _rows(ledger)] == ["msg-0", "msg-1", "msg-2"]


class TestIntegrity:
    def test_missing_file(self, ledger):
        assert ledger.verify_integrity() == (False, "File does not exist")

    def test_bad_header(self, ledger):
        ledger.path.write_text("timestamp,type\n")
        assert ledger.verify_integrity() == (False, "Invalid header")

    def test_short_line_reported(self, ledger):
        ledger.append(_record())
        with ledger.path.open("a") as f:
            f.write("2026-03-14,LEDGER_TRANSFER,ao\n")
        ok, error = ledger.verify_integrity()
        assert ok is False
        assert error == f"Line 3 has 3 fields, expected {len(LEDGER_COLUMNS)}"


class TestSummary:
    def test_counts_by_kind(self, ledger):
        ledger.append(_record(TransactionKind.SOURCE_SWAP))
        ledger.append(_record(TransactionKind.BRIDGE_BURN))
        ledger.append(_record(TransactionKind.LEDGER_TRANSFER))
        ledger.append(_record(TransactionKind.LEDGER_TRANSFER))
        summary = ledger.summary()
        assert summary[TransactionKind.LEDGER_TRANSFER] == 2
        assert summary[TransactionKind.SOURCE_SWAP] == 1
        assert summary[TransactionKind.RECOVERY_TRANSFER] == 0

    def test_missing_file_all_zero(self, ledger):
        assert set(ledger.summary().values()) == {0}


class TestBackups:
    """One backup per minute of activity, pruned after the retention window."""

    def test_no_backup_without_data(self, ledger, tmp_path):
        ledger.open(NOW)
        assert ledger.backup(NOW) is None
        assert not (tmp_path / "backups").exists()

    def test_backup_named_by_minute(self, ledger):
        ledger.append(_record())
        path = ledger.backup(NOW)
        assert path.name == "transactions_20260314_0926.csv"
        assert path.read_text() == ledger.path.read_text()

    def test_same_minute_not_overwritten(self, ledger):
        ledger.append(_record())
        first = ledger.backup(NOW)
        ledger.append(_record(tx_id="msg-2"))
        second = ledger.backup(NOW + timedelta(seconds=20))
        assert first == second
        assert "msg-2" not in second.read_text()

    def test_prune_removes_only_expired(self, ledger, tmp_path):
        backups = tmp_path / "backups"
        backups.mkdir()
        old = backups / "transactions_20260101_0000.csv"
        recent = backups / "transactions_20260310_1200.csv"
        other = backups / "notes.csv"
        odd = backups / "transactions_latest.csv"
        for f in (old, recent, other, odd):
            f.write_text("x")

        assert ledger.prune_backups(NOW) == 1
        assert not old.exists()
        assert recent.exists() and other.exists() and odd.exists()

    def test_open_backs_up_and_prunes(self, ledger, tmp_path):
        ledger.append(_record())
        stale = tmp_path / "backups" / "transactions_20250101_0000.csv"
        stale.parent.mkdir()
        stale.write_text("x")
        ledger.open(NOW)
        assert (tmp_path / "backups" / "transactions_20260314_0926.csv").exists()
        assert not stale.exists()

    def test_appends_back_up_and_prune_while_running(self, ledger, tmp_path):
        backups = tmp_path / "backups"
        ledger.append(_record(tx_id="msg-1"))
        assert not backups.exists()

        ledger.append(_record(tx_id="msg-2", timestamp=NOW + timedelta(hours=1)))
        ledger.append(_record(tx_id="msg-3", timestamp=NOW + timedelta(hours=2)))
        names = sorted(f.name for f in backups.iterdir())
        assert names == ["transactions_20260314_1026.csv", "transactions_20260314_1126.csv"]
        assert "msg-2" not in (backups / names[0]).read_text()
        assert "msg-2" in (backups / names[1]).read_text()

        ledger.append(_record(tx_id="msg-4", timestamp=NOW + timedelta(days=40)))
        assert sorted(f.name for f in backups.iterdir()) == ["transactions_20260423_0926.csv"]
        assert [r["tx_id"] for r in _rows(ledger)] == ["msg-1", "msg-2", "msg-3", "msg-4"]

    def test_backup_failure_does_not_block_append(self, ledger, tmp_path):
        ledger.append(_record(tx_id="msg-1"))
        (tmp_path / "backups").write_text("not a directory")
        ledger.append(_record(tx_id="msg-2", timestamp=NOW + timedelta(minutes=1)))
        assert [r["tx_id"] for r in _rows(ledger)] == ["msg-1", "msg-2"]
