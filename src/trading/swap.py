"""Swap execution: gate on price impact, submit, then measure the output.

The executor never trusts a quote's expected output: the amount handed
downstream is always the observed balance delta of the output token.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Awaitable, Callable

from loguru import logger

from src.chains.ao import AOClient
from src.chains.evm import BaseChainClient
from src.errors import QueryError, SubmissionError
from src.models.tokens import Token, TokenAmount
from src.trading.balances import BalanceOracle
from src.trading.quotes import KyberSwapQuoteClient, PermaswapQuoteClient, Quote, QuoteClient

Sleep = Callable[[float], Awaitable[None]]

ORDER_NOTE_WAIT_SEC = 3.0  # pool needs a moment to index a new order


@dataclass
class SwapResult:
    """Outcome of one swap attempt.

    aborted=True means nothing was submitted. confirmation_unverified=True
    means the trade was submitted but its output could not be measured:
    funds likely moved, do not swap again.
    """

    success: bool
    quote: Quote | None = None
    actual_output: TokenAmount | None = None
    tx_ids: dict[str, str] = field(default_factory=dict)
    gas_used: int | None = None
    fee_wei: int | None = None
    aborted: bool = False
    dry_run: bool = False
    confirmation_unverified: bool = False
    error: str | None = None

    @property
    def input_amount(self) -> TokenAmount | None:
        return self.quote.input_amount if self.quote else None

    @property
    def expected_output(self) -> TokenAmount | None:
        return self.quote.expected_output if self.quote else None

    @property
    def price_impact_pct(self) -> Decimal | None:
        return self.quote.price_impact_pct if self.quote else None


@dataclass
class _Submission:
    tx_ids: dict[str, str] = field(default_factory=dict)
    gas_used: int | None = None
    fee_wei: int | None = None
    confirm_ref: str = ""


class SwapExecutor:
    """Template for one venue: subclasses implement _submit and optionally _confirm."""

    venue = "swap"

    def __init__(
        self,
        *,
        quotes: QuoteClient,
        oracle: BalanceOracle,
        owner: str,
        settlement_wait_sec: float = 0.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._quotes = quotes
        self._oracle = oracle
        self._owner = owner
        self._settlement_wait = settlement_wait_sec
        self._sleep = sleep

    @property
    def owner(self) -> str:
        return self._owner

    async def reference_price(self, input_token: Token, output_token: Token) -> Decimal:
        """Input units per output unit, for sizing. Not a quote."""
        return await self._quotes.get_price(input_token, output_token)

    async def quote(self, input_amount: TokenAmount, output_token: Token) -> Quote:
        return await self._quotes.get_quote(input_amount, output_token)

    async def execute(
        self,
        input_amount: TokenAmount,
        output_token: Token,
        max_price_impact_pct: Decimal,
        dry_run: bool = False,
        *,
        quote: Quote | None = None,
    ) -> SwapResult:
        """Gate on price impact, then submit and measure.

        Fetches a fresh quote unless the caller just took one. Allowance and
        submission failures propagate as SubmissionError.
        """
        if quote is None:
            quote = await self.quote(input_amount, output_token)

        if quote.price_impact_pct > max_price_impact_pct:
            logger.warning(
                f"[SWAP] Price impact {quote.price_impact_pct:.2f}% exceeds "
                f"max {max_price_impact_pct}%, not submitting"
            )
            return SwapResult(
                success=False, quote=quote, aborted=True, error="price impact exceeded"
            )

        if dry_run:
            logger.info(
                f"[SWAP] [DRY RUN] Would swap {quote.input_amount} -> ~{quote.expected_output} "
                f"on {self.venue}"
            )
            return SwapResult(success=True, quote=quote, dry_run=True)

        before = await self._oracle.get_balance(self._owner, output_token)

        logger.info(f"[SWAP] Submitting {quote.input_amount} -> {output_token.symbol} on {self.venue}")
        submission = await self._submit(quote, max_price_impact_pct)

        if self._settlement_wait > 0:
            logger.info(f"[SWAP] Waiting {self._settlement_wait:.0f}s for settlement...")
            await self._sleep(self._settlement_wait)

        try:
            await self._confirm(submission)
            after = await self._oracle.get_balance(self._owner, output_token)
        except QueryError as e:
            logger.warning(f"[SWAP] Trade submitted but output unverified: {e}")
            return SwapResult(
                success=True,
                quote=quote,
                tx_ids=submission.tx_ids,
                gas_used=submission.gas_used,
                fee_wei=submission.fee_wei,
                confirmation_unverified=True,
                error=str(e),
            )

        delta = max(after.raw - before.raw, 0)
        actual = TokenAmount.from_raw(output_token, delta)
        if actual.raw < quote.expected_output.raw:
            shortfall = (quote.expected_output.units - actual.units) / quote.expected_output.units * 100
            logger.info(f"[SWAP] Received {actual}, {shortfall:.2f}% below quote")
        logger.info(f"[SWAP] Swap complete: {quote.input_amount} -> {actual}")

        return SwapResult(
            success=True,
            quote=quote,
            actual_output=actual,
            tx_ids=submission.tx_ids,
            gas_used=submission.gas_used,
            fee_wei=submission.fee_wei,
        )

    async def _submit(self, quote: Quote, max_price_impact_pct: Decimal) -> _Submission:
        raise NotImplementedError

    async def _confirm(self, submission: _Submission) -> None:
        return None


class KyberSwapExecutor(SwapExecutor):
    """Aggregator route on Base. Confirmation is the receipt; no settlement wait."""

    venue = "kyberswap"

    def __init__(
        self,
        *,
        quotes: KyberSwapQuoteClient,
        oracle: BalanceOracle,
        base: BaseChainClient,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(quotes=quotes, oracle=oracle, owner=base.address, sleep=sleep)
        self._kyber = quotes
        self._base = base

    async def _ensure_allowance(self, token_address: str, spender: str, amount: int) -> str:
        """Approve the router if needed. Returns the approval tx hash or ''."""
        current = await self._base.get_allowance(token_address, spender)
        if current >= amount:
            logger.debug(f"[SWAP] Allowance sufficient ({current} >= {amount})")
            return ""
        receipt = await self._base.approve(token_address, spender)
        return receipt.tx_hash

    async def _submit(self, quote: Quote, max_price_impact_pct: Decimal) -> _Submission:
        router = quote.route.get("routerAddress", "")
        if not router:
            raise SubmissionError("KyberSwap route has no router address")

        tx_ids: dict[str, str] = {}
        approval = await self._ensure_allowance(quote.input_token.address, router, quote.input_amount.raw)
        if approval:
            tx_ids["approval"] = approval

        built = await self._kyber.build_route(
            quote.route["routeSummary"],
            sender=self._base.address,
            slippage_bps=int(max_price_impact_pct * 100),
        )
        gas = built.get("gas")
        receipt = await self._base.send_transaction(
            built.get("routerAddress") or router,
            built["data"],
            gas_limit=int(int(gas) * 1.2) if gas else None,
            value=int(built.get("transactionValue") or 0),
        )
        tx_ids["swap"] = receipt.tx_hash
        return _Submission(tx_ids=tx_ids, gas_used=receipt.gas_used, fee_wei=receipt.fee_wei)


class PermaswapExecutor(SwapExecutor):
    """RequestOrder -> GetNote -> Transfer to settle -> GetSettled on an AO pool."""

    venue = "permaswap"

    def __init__(
        self,
        *,
        quotes: PermaswapQuoteClient,
        oracle: BalanceOracle,
        ao: AOClient,
        settlement_wait_sec: float = 60.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        super().__init__(
            quotes=quotes,
            oracle=oracle,
            owner=ao.address,
            settlement_wait_sec=settlement_wait_sec,
            sleep=sleep,
        )
        self._pool_id = quotes.pool_id
        self._ao = ao

    async def request_order(self, quote: Quote) -> dict[str, str]:
        """Place an order and read back its note (id, settle process, amount)."""
        order_id = await self._ao.send_message(
            self._pool_id,
            {
                "Action": "RequestOrder",
                "TokenIn": quote.input_token.address,
                "AmountIn": str(quote.input_amount.raw),
                "TokenOut": quote.output_token.address,
            },
        )
        logger.info(f"[SWAP] Order requested: {order_id}")
        await self._sleep(ORDER_NOTE_WAIT_SEC)

        try:
            messages = await self._ao.dry_run(self._pool_id, {"Action": "GetNote", "MakeTx": order_id})
            note = json.loads(messages[0]["Data"]) if messages and messages[0].get("Data") else {}
        except (QueryError, ValueError) as e:
            raise SubmissionError(f"Order note unreadable: {e}", tx_id=order_id) from e

        note_id = note.get("NoteID") or note.get("ID")
        settle = note.get("Settle") or note.get("NoteSettle")
        if not note_id or not settle:
            raise SubmissionError("No note data returned for order", tx_id=order_id)

        amount = note.get("Amount") or note.get("AmountOut") or note.get("ExpectedAmountOut") or ""
        logger.info(f"[SWAP] Note {note_id}, settle via {settle[:12]}, amount out {amount}")
        return {"order": order_id, "note": str(note_id), "settle_process": str(settle), "note_amount": str(amount)}

    async def _submit(self, quote: Quote, max_price_impact_pct: Decimal) -> _Submission:
        order = await self.request_order(quote)

        settle_tx = await self._ao.send_message(
            quote.input_token.address,
            {
                "Action": "Transfer",
                "Recipient": order["settle_process"],
                "Quantity": str(quote.input_amount.raw),
                "X-FFP-For": "Settle",
                "X-FFP-NoteIDs": json.dumps([order["note"]]),
            },
        )
        logger.info(f"[SWAP] Settlement transfer sent: {settle_tx}")
        return _Submission(
            tx_ids={"order": order["order"], "note": order["note"], "settle": settle_tx},
            confirm_ref=order["settle_process"],
        )

    async def _confirm(self, submission: _Submission) -> None:
        """Best-effort settle lookup. Missing data is logged; the balance delta decides."""
        settle_tx = submission.tx_ids.get("settle", "")
        try:
            messages = await self._ao.dry_run(
                submission.confirm_ref, {"Action": "GetSettled", "SettleID": settle_tx}
            )
        except QueryError as e:
            logger.warning(f"[SWAP] Could not get settle result, transfer was sent: {e}")
            return
        if not messages:
            logger.warning("[SWAP] No settle result yet, settlement may still be processing")
            return
        data = messages[0].get("Data") or ""
        try:
            logger.info(f"[SWAP] Settle result: {json.loads(data) if data else '(empty)'}")
        except ValueError:
            logger.warning(f"[SWAP] Could not parse settle result: {data[:200]}")
