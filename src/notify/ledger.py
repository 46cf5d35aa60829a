"""Append-only CSV transaction ledger.

Written for operators reconciling by hand; the bot never reads it back to make
decisions. Before each write (and at startup) the file is copied to a backup
named by the minute, and backups older than the retention window are pruned.
"""

from __future__ import annotations

import csv
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path

from loguru import logger

from src.models.ledger import TransactionKind, TransactionRecord

LEDGER_COLUMNS = [
    "timestamp",
    "transaction_type",
    "chain",
    "from_token",
    "from_amount",
    "to_token",
    "to_amount",
    "exchange_rate",
    "slippage_percent",
    "from_wallet",
    "to_wallet",
    "tx_id",
    "base_tx_hash",
    "ao_destination",
    "gas_used",
    "order_id",
    "settlement_id",
    "notes",
]

BACKUP_PREFIX = "transactions_"


class CsvTransactionLedger:
    def __init__(
        self,
        path: str | Path = "transactions.csv",
        backup_dir: str | Path = "transaction-backups",
        retention_days: int = 30,
    ) -> None:
        self._path = Path(path)
        self._backup_dir = Path(backup_dir)
        self._retention = timedelta(days=retention_days)

    @property
    def path(self) -> Path:
        return self._path

    def open(self, now: datetime | None = None) -> None:
        """Create the file with a header if needed, back it up, prune old backups."""
        self.ensure_file()
        self.backup(now)
        self.prune_backups(now)

    def ensure_file(self) -> None:
        if self._path.exists() and self._path.stat().st_size > 0:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("w", newline="", encoding="utf-8") as f:
            csv.writer(f).writerow(LEDGER_COLUMNS)
        logger.info(f"[LEDGER] Created {self._path}")

    def backup(self, now: datetime | None = None) -> Path | None:
        """Copy the ledger to transactions_YYYYMMDD_HHMM.csv when it has data rows."""
        if not self._path.exists() or len(self._read_lines()) <= 1:
            return None
        now = now or datetime.now(UTC)
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        target = self._backup_dir / f"{BACKUP_PREFIX}{now:%Y%m%d_%H%M}.csv"
        if target.exists():
            return target
        shutil.copyfile(self._path, target)
        logger.info(f"[LEDGER] Created backup: {target.name}")
        return target

    def prune_backups(self, now: datetime | None = None) -> int:
        if not self._backup_dir.exists():
            return 0
        cutoff = (now or datetime.now(UTC)) - self._retention
        removed = 0
        for file in self._backup_dir.glob(f"{BACKUP_PREFIX}*.csv"):
            try:
                stamp = datetime.strptime(file.stem.removeprefix(BACKUP_PREFIX), "%Y%m%d_%H%M")
            except ValueError:
                continue
            if stamp.replace(tzinfo=UTC) < cutoff:
                file.unlink()
                removed += 1
                logger.info(f"[LEDGER] Deleted old backup: {file.name}")
        return removed

    def append(self, record: TransactionRecord, now: datetime | None = None) -> None:
        """Back up, prune, then append one row. Backup trouble never blocks the write."""
        self.ensure_file()
        now = now or record.timestamp
        try:
            self.backup(now)
            self.prune_backups(now)
        except OSError as e:
            logger.warning(f"[LEDGER] Backup failed, appending anyway: {e}")
        row = record.to_row()
        with self._path.open("a", newline="", encoding="utf-8") as f:
            csv.DictWriter(f, fieldnames=LEDGER_COLUMNS).writerow(row)
        logger.debug(f"[LEDGER] {record.kind.value} {record.from_amount} {record.from_token} -> {record.to_amount} {record.to_token}")

    def _read_lines(self) -> list[list[str]]:
        with self._path.open(newline="", encoding="utf-8") as f:
            return list(csv.reader(f))

    def verify_integrity(self) -> tuple[bool, str | None]:
        if not self._path.exists():
            return False, "File does not exist"
        rows = self._read_lines()
        if not rows or rows[0] != LEDGER_COLUMNS:
            return False, "Invalid header"
        for i, row in enumerate(rows[1:], start=2):
            if len(row) != len(LEDGER_COLUMNS):
                return False, f"Line {i} has {len(row)} fields, expected {len(LEDGER_COLUMNS)}"
        return True, None

    def summary(self) -> dict[TransactionKind, int]:
        counts = {kind: 0 for kind in TransactionKind}
        if not self._path.exists():
            return counts
        for row in self._read_lines()[1:]:
            if len(row) > 1 and row[1] in TransactionKind.__members__:
                counts[TransactionKind(row[1])] += 1
        return counts
