"""Base -> AO bridge: burn on Base, then watch AO for the relayer's credit.

The bridge is fire-and-forget. A credit that has not been observed yet and a
credit that will never arrive look the same until the wait ceiling, so
wait_for_credit() returns observed=False on timeout instead of raising.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Awaitable, Callable

from loguru import logger

from src.chains.ao import AOClient, tags_to_dict
from src.chains.evm import BaseChainClient
from src.errors import InsufficientFunds, QueryError, StrandedFundsError, SubmissionError
from src.models.tokens import Token, TokenAmount
from src.trading.balances import BalanceOracle

# AO wallet the Base bridge relayer sends Credit-Notice from
BASE_BRIDGE_AO_ADDRESS = "mFRKcHsO6Tlv2E2wZcrcbv3mmzxzD7vYPbyybI3KCVA"

CREDIT_NOTICE_QUERY = """
query ($recipients: [String!], $process: String!, $sender: String!, $first: Int!) {
  transactions(
    recipients: $recipients
    tags: [
      { name: "Action", values: ["Credit-Notice"] }
      { name: "From-Process", values: [$process] }
      { name: "Sender", values: [$sender] }
    ]
    first: $first
    sort: HEIGHT_DESC
  ) {
    edges {
      node {
        id
        tags { name value }
        block { timestamp height }
      }
    }
  }
}
"""


@dataclass(frozen=True)
class BurnResult:
    amount: TokenAmount
    destination: str
    tx_hash: str = ""
    gas_used: int | None = None
    dry_run: bool = False


@dataclass(frozen=True)
class BridgeCredit:
    """A Credit-Notice observed on AO for a bridged amount."""

    destination: str
    amount: TokenAmount
    confirmation_id: str
    source_tx_id: str = ""
    block_height: int | None = None
    block_timestamp: int | None = None
    observed_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class PollProgress:
    attempt: int
    elapsed_sec: float


@dataclass(frozen=True)
class CreditWaitResult:
    observed: bool
    credit: BridgeCredit | None
    waited_sec: float
    attempts: int


class BaseBridge:
    """Burns ARIO on Base with the destination AO address attached."""

    def __init__(self, *, base: BaseChainClient, oracle: BalanceOracle, token: Token) -> None:
        self._base = base
        self._oracle = oracle
        self._token = token

    @property
    def address(self) -> str:
        return self._base.address

    async def burn(self, amount: TokenAmount, destination: str, dry_run: bool = False) -> BurnResult:
        """Burn after a fresh balance check.

        Raises InsufficientFunds before submitting, StrandedFundsError if the
        burn fails or reverts (the ARIO stays on Base for the next cycle).
        """
        if amount.raw <= 0:
            raise SubmissionError(f"Refusing to burn non-positive amount {amount}")

        snapshot = await self._oracle.get_balance(self._base.address, self._token)
        if snapshot.amount < amount:
            raise InsufficientFunds(
                f"Insufficient {self._token.symbol} on Base: have {snapshot.amount}, need {amount}",
                have=snapshot.amount,
                need=amount,
            )

        if dry_run:
            logger.info(f"[BRIDGE] [DRY RUN] Would burn {amount} -> {destination}")
            return BurnResult(amount=amount, destination=destination, dry_run=True)

        logger.info(f"[BRIDGE] Burning {amount} on Base for {destination}")
        try:
            receipt = await self._base.burn(self._token.address, amount.raw, destination)
        except SubmissionError as e:
            raise StrandedFundsError(f"Bridge burn failed: {e}", tx_id=e.tx_id) from e

        logger.info(f"[BRIDGE] Burn confirmed: {receipt.tx_hash}")
        return BurnResult(
            amount=amount,
            destination=destination,
            tx_hash=receipt.tx_hash,
            gas_used=receipt.gas_used,
        )


class BridgeVerifier:
    """Looks for the relayer's Credit-Notice in the Arweave GraphQL index."""

    def __init__(
        self,
        *,
        ao: AOClient,
        token: Token,
        bridge_sender: str = BASE_BRIDGE_AO_ADDRESS,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ao = ao
        self._token = token
        self._sender = bridge_sender
        self._clock = clock
        self._sleep = sleep

    async def _credit_notices(self, recipient: str, first: int) -> list[dict]:
        data = await self._ao.graphql(
            CREDIT_NOTICE_QUERY,
            {
                "recipients": [recipient],
                "process": self._token.address,
                "sender": self._sender,
                "first": first,
            },
        )
        return [edge.get("node") or {} for edge in (data.get("transactions") or {}).get("edges") or []]

    def _to_credit(self, node: dict, recipient: str, source_tx_id: str = "") -> BridgeCredit:
        tags = tags_to_dict(node.get("tags"))
        block = node.get("block") or {}
        try:
            quantity = int(tags.get("Quantity") or 0)
        except ValueError:
            quantity = 0
        return BridgeCredit(
            destination=recipient,
            amount=TokenAmount.from_raw(self._token, quantity),
            confirmation_id=node.get("id", ""),
            source_tx_id=source_tx_id,
            block_height=block.get("height"),
            block_timestamp=block.get("timestamp"),
        )

    async def verify_credit(
        self,
        recipient: str,
        expected: TokenAmount,
        *,
        tolerance_fraction: Decimal = Decimal("0.01"),
        max_age_minutes: int = 30,
        source_tx_id: str = "",
    ) -> BridgeCredit | None:
        """Most recent credit within tolerance of expected and not older than max age."""
        tolerance = int((Decimal(expected.raw) * tolerance_fraction).to_integral_value(rounding=ROUND_FLOOR))
        low, high = expected.raw - tolerance, expected.raw + tolerance
        now = self._clock()
        max_age = max_age_minutes * 60

        nodes = await self._credit_notices(recipient, 10)
        if not nodes:
            logger.debug("[BRIDGE] No Credit-Notice found from Base bridge")
            return None

        for node in nodes:
            credit = self._to_credit(node, recipient, source_tx_id)
            if not low <= credit.amount.raw <= high:
                continue
            # Pending transactions have no block yet
            if credit.block_timestamp and now - credit.block_timestamp > max_age:
                continue
            logger.info(f"[BRIDGE] Found matching Credit-Notice: {credit.amount} (TX: {credit.confirmation_id})")
            return credit

        latest = self._to_credit(nodes[0], recipient)
        logger.debug(f"[BRIDGE] Credit-Notice amount mismatch. Expected ~{expected}, latest {latest.amount}")
        return None

    async def wait_for_credit(
        self,
        recipient: str,
        expected: TokenAmount,
        *,
        max_wait_sec: float,
        poll_interval_sec: float,
        tolerance_fraction: Decimal = Decimal("0.01"),
        max_age_minutes: int = 30,
        on_poll: Callable[[PollProgress], None] | None = None,
        source_tx_id: str = "",
    ) -> CreditWaitResult:
        """Poll until a matching credit shows up or max_wait_sec elapses. Never raises on timeout."""
        start = self._clock()
        attempts = 0

        while self._clock() - start < max_wait_sec:
            attempts += 1
            if on_poll is not None:
                try:
                    on_poll(PollProgress(attempt=attempts, elapsed_sec=self._clock() - start))
                except Exception as e:
                    logger.debug(f"[BRIDGE] Poll observer failed: {e}")

            try:
                credit = await self.verify_credit(
                    recipient,
                    expected,
                    tolerance_fraction=tolerance_fraction,
                    max_age_minutes=max_age_minutes,
                    source_tx_id=source_tx_id,
                )
            except QueryError as e:
                logger.warning(f"[BRIDGE] Credit lookup failed (attempt {attempts}): {e}")
                credit = None

            if credit is not None:
                return CreditWaitResult(
                    observed=True, credit=credit, waited_sec=self._clock() - start, attempts=attempts
                )

            remaining = max_wait_sec - (self._clock() - start)
            if remaining <= 0:
                break
            await self._sleep(min(poll_interval_sec, remaining))

        waited = self._clock() - start
        logger.warning(f"[BRIDGE] Credit not observed after {waited:.0f}s ({attempts} attempts)")
        return CreditWaitResult(observed=False, credit=None, waited_sec=waited, attempts=attempts)

    async def recent_credits(self, recipient: str, limit: int = 5) -> list[BridgeCredit]:
        nodes = await self._credit_notices(recipient, limit)
        return [self._to_credit(node, recipient) for node in nodes]
