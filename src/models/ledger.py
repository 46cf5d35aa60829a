import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal


class TransactionKind(str, enum.Enum):
    SOURCE_SWAP = "SOURCE_SWAP"
    BRIDGE_BURN = "BRIDGE_BURN"
    LEDGER_TRANSFER = "LEDGER_TRANSFER"
    RECOVERY_TRANSFER = "RECOVERY_TRANSFER"


@dataclass(frozen=True)
class TransactionRecord:
    """One append-only ledger line. Written for operators, never read back."""

    kind: TransactionKind
    chain: str
    from_token: str
    from_amount: Decimal
    to_token: str
    to_amount: Decimal
    from_wallet: str
    to_wallet: str
    exchange_rate: Decimal | None = None
    price_impact_pct: Decimal | None = None
    tx_id: str = ""
    base_tx_hash: str = ""
    ao_destination: str = ""
    gas_used: int | None = None
    order_id: str = ""
    settlement_id: str = ""
    notes: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_row(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "transaction_type": self.kind.value,
            "chain": self.chain,
            "from_token": self.from_token,
            "from_amount": str(self.from_amount),
            "to_token": self.to_token,
            "to_amount": str(self.to_amount),
            "exchange_rate": "" if self.exchange_rate is None else str(self.exchange_rate),
            "slippage_percent": "" if self.price_impact_pct is None else str(self.price_impact_pct),
            "from_wallet": self.from_wallet,
            "to_wallet": self.to_wallet,
            "tx_id": self.tx_id,
            "base_tx_hash": self.base_tx_hash,
            "ao_destination": self.ao_destination,
            "gas_used": "" if self.gas_used is None else str(self.gas_used),
            "order_id": self.order_id,
            "settlement_id": self.settlement_id,
            "notes": self.notes,
        }
