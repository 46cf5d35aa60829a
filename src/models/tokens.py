"""Token identities, fixed-precision amounts and balance snapshots.

Amounts carry both the human unit (Decimal) and the integer smallest unit.
Conversions from units round DOWN for anything we send or burn and UP for
anything we require as input, so we never promise more than exists.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal


class Ledger(str, enum.Enum):
    BASE = "base"
    AO = "ao"


@dataclass(frozen=True)
class Token:
    """A token on one ledger. address=None means the ledger's native gas token."""

    symbol: str
    ledger: Ledger
    decimals: int
    address: str | None = None

    @property
    def is_native(self) -> bool:
        return self.address is None

    def __str__(self) -> str:
        return f"{self.symbol}@{self.ledger.value}"


@dataclass(frozen=True)
class TokenAmount:
    token: Token
    raw: int  # smallest unit

    @classmethod
    def from_raw(cls, token: Token, raw: int | str) -> TokenAmount:
        return cls(token, int(raw))

    @classmethod
    def from_units(cls, token: Token, value: Decimal | int | str, *, round_up: bool = False) -> TokenAmount:
        """Convert human units to smallest units.

        round_up=False (default) floors: use for amounts to transfer or burn.
        round_up=True ceils: use for amounts required as input.
        """
        scaled = Decimal(str(value)).scaleb(token.decimals)
        rounding = ROUND_CEILING if round_up else ROUND_FLOOR
        return cls(token, int(scaled.to_integral_value(rounding=rounding)))

    @classmethod
    def zero(cls, token: Token) -> TokenAmount:
        return cls(token, 0)

    @property
    def units(self) -> Decimal:
        return Decimal(self.raw).scaleb(-self.token.decimals)

    def _check(self, other: TokenAmount) -> None:
        if other.token != self.token:
            raise ValueError(f"Token mismatch: {self.token} vs {other.token}")

    def __add__(self, other: TokenAmount) -> TokenAmount:
        self._check(other)
        return TokenAmount(self.token, self.raw + other.raw)

    def __sub__(self, other: TokenAmount) -> TokenAmount:
        self._check(other)
        return TokenAmount(self.token, self.raw - other.raw)

    def __lt__(self, other: TokenAmount) -> bool:
        self._check(other)
        return self.raw < other.raw

    def __le__(self, other: TokenAmount) -> bool:
        self._check(other)
        return self.raw <= other.raw

    def __gt__(self, other: TokenAmount) -> bool:
        self._check(other)
        return self.raw > other.raw

    def __ge__(self, other: TokenAmount) -> bool:
        self._check(other)
        return self.raw >= other.raw

    def __str__(self) -> str:
        return f"{self.units:,.{min(self.token.decimals, 6)}f} {self.token.symbol}"


@dataclass(frozen=True)
class BalanceSnapshot:
    """One balance read. A new query always produces a new snapshot."""

    owner: str
    amount: TokenAmount
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def token(self) -> Token:
        return self.amount.token

    @property
    def units(self) -> Decimal:
        return self.amount.units

    @property
    def raw(self) -> int:
        return self.amount.raw
