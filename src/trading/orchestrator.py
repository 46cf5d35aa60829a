"""Top-up control loop: recover -> size -> swap -> bridge -> verify -> transfer.

One cycle is strictly sequential and re-derives every decision from live
balances. Nothing is remembered between cycles except the CSV ledger, which
is never read back. There is no cross-chain atomicity: a failed burn or an
unobserved bridge credit is alerted for manual reconciliation, never blindly
retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Awaitable, Callable

from loguru import logger

from config.settings import Settings
from src.chains.ao import AOClient
from src.errors import (
    InsufficientFunds,
    QueryError,
    QuoteUnavailable,
    StrandedFundsError,
    SubmissionError,
    TopUpError,
)
from src.models.cycle import CycleOutcome, CycleStage, CycleStatus
from src.models.ledger import TransactionKind, TransactionRecord
from src.models.tokens import Ledger, Token, TokenAmount
from src.trading.balances import BalanceOracle
from src.trading.bridge import BaseBridge, BridgeVerifier, BurnResult, PollProgress
from src.trading.swap import SwapExecutor, SwapResult

if TYPE_CHECKING:
    from src.notify.reporter import EventReporter

ETH_DECIMALS = 18


def needed_amount(target: TokenAmount, current: TokenAmount) -> TokenAmount:
    """max(0, target - current)"""
    return TokenAmount.from_raw(target.token, max(0, target.raw - current.raw))


def sendable_amount(observed: TokenAmount, needed: TokenAmount) -> TokenAmount:
    """min(observed, needed), never negative. Denominated in needed's token."""
    return TokenAmount.from_raw(needed.token, max(0, min(observed.raw, needed.raw)))


def convert(amount: TokenAmount, token: Token) -> TokenAmount:
    """Same quantity of the same asset on another ledger, rounded down."""
    if amount.token.decimals == token.decimals:
        return TokenAmount.from_raw(token, amount.raw)
    return TokenAmount.from_units(token, amount.units)


@dataclass(frozen=True)
class TokenSet:
    target: Token  # what the target wallet must hold
    source: Token  # what the swap spends
    swap_output: Token  # what the swap produces, on the venue's ledger
    gas: Token | None = None  # native gas token of the swap ledger, if monitored


def tokens_from_settings(s: Settings) -> TokenSet:
    target = Token(s.target_token_symbol, Ledger.AO, s.target_token_decimals, s.target_token_process_id)
    if s.requires_bridge:
        return TokenSet(
            target=target,
            source=Token("USDC", Ledger.BASE, s.base_token_decimals, s.base_usdc_contract),
            swap_output=Token(s.target_token_symbol, Ledger.BASE, s.base_token_decimals, s.base_ario_contract),
            gas=Token("ETH", Ledger.BASE, ETH_DECIMALS),
        )
    return TokenSet(
        target=target,
        source=Token(s.source_token_symbol, Ledger.AO, s.source_token_decimals, s.source_token_process_id),
        swap_output=target,
    )


def operator_action(error: TopUpError, symbol: str) -> str:
    if isinstance(error, StrandedFundsError):
        return f"{symbol} stranded on source chain, will retry next cycle"
    if isinstance(error, SubmissionError):
        if error.tx_id:
            return f"Check transaction {error.tx_id} before retrying manually"
        return "Nothing was committed, will retry next cycle"
    if isinstance(error, InsufficientFunds):
        return "Fund the operating wallet"
    if isinstance(error, QuoteUnavailable):
        return "No route or liquidity, will retry next cycle"
    if isinstance(error, QueryError):
        return "Check RPC / AO node connectivity, will retry next cycle"
    return ""


class TopUpOrchestrator:
    def __init__(
        self,
        *,
        settings: Settings,
        tokens: TokenSet,
        oracle: BalanceOracle,
        ao: AOClient,
        executor: SwapExecutor,
        reporter: EventReporter,
        bridge: BaseBridge | None = None,
        verifier: BridgeVerifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if settings.requires_bridge and (bridge is None or verifier is None):
            raise ValueError("Bridge and verifier are required when the swap output needs bridging")
        self._s = settings
        self._t = tokens
        self._oracle = oracle
        self._ao = ao
        self._executor = executor
        self._reporter = reporter
        self._bridge = bridge
        self._verifier = verifier
        self._sleep = sleep

    @property
    def _bridged(self) -> bool:
        return self._bridge is not None and self._t.swap_output.ledger is not self._t.target.ledger

    async def run_cycle(self) -> CycleOutcome:
        """Run one top-up cycle. Every TopUpError ends as an ABORTED outcome, never raised."""
        outcome = CycleOutcome(target_wallet=self._s.target_wallet_address, dry_run=self._s.dry_run)
        try:
            await self._run(outcome)
        except TopUpError as e:
            outcome.status = CycleStatus.ABORTED
            outcome.reason = f"{type(e).__name__}: {e}"
            outcome.operator_action = operator_action(e, self._t.target.symbol)
            await self._reporter.failure(outcome)
        return outcome

    # ─── Stages ───────────────────────────────────────────────────────

    async def _run(self, outcome: CycleOutcome) -> None:
        s, t = self._s, self._t

        outcome.stage = CycleStage.CHECK_TARGET
        current = (await self._oracle.get_balance(s.target_wallet_address, t.target)).amount
        minimum = TokenAmount.from_units(t.target, s.min_balance)
        target = TokenAmount.from_units(t.target, s.target_balance)
        outcome.balance_before = current
        outcome.target_balance = target

        if current >= minimum:
            logger.info(f"[ORCH] Balance {current} >= minimum {minimum}, no action needed")
            await self._finish(outcome, CycleStatus.SUFFICIENT)
            return

        await self._reporter.cycle_start(
            s.target_wallet_address, current, s.min_balance, s.target_balance, s.swap_venue, s.dry_run
        )

        outcome.stage = CycleStage.CHECK_MIN_TRANSFER
        needed = needed_amount(target, current)
        outcome.needed = needed
        min_transfer = TokenAmount.from_units(t.target, s.min_transfer_amount)
        if needed < min_transfer:
            logger.info(f"[ORCH] Need {needed} below minimum transfer {min_transfer}, skipping")
            await self._finish(outcome, CycleStatus.SKIPPED_BELOW_MINIMUM)
            return

        # Cheapest first: anything already acquired but not forwarded
        outcome.stage = CycleStage.RECOVER_INTERMEDIATE
        sent = await self._forward(outcome, needed, TransactionKind.RECOVERY_TRANSFER, "recovery_transfer")
        if sent.raw:
            outcome.recovered = sent
            outcome.transferred = sent

        if self._bridged:
            carried = await self._recover_source_chain(outcome, needed_amount(needed, sent))
            if carried is None:
                return
            moved, observed = carried
            sent = sent + moved
            outcome.transferred = sent if sent.raw else None
            if not observed:
                await self._finish(outcome, CycleStatus.TOPPED_UP_UNVERIFIED)
                return

        remaining = await self._remaining_need(target, needed, sent)
        if remaining.raw == 0 or remaining < min_transfer:
            logger.info(f"[ORCH] Recovery covered the need (remaining {remaining})")
            status = CycleStatus.RECOVERED if sent.raw else CycleStatus.SKIPPED_BELOW_MINIMUM
            if s.dry_run and sent.raw:
                status = CycleStatus.SIMULATED
            await self._finish(outcome, status)
            return

        outcome.stage = CycleStage.CHECK_SOURCE_FUNDS
        source_needed = await self._size_source(outcome, remaining)
        if source_needed is None:
            return

        outcome.stage = CycleStage.QUOTE_AND_GATE
        quote = await self._executor.quote(source_needed, t.swap_output)
        outcome.stage = CycleStage.SWAP
        swap = await self._executor.execute(source_needed, t.swap_output, s.max_slippage, s.dry_run, quote=quote)
        outcome.swap = swap
        outcome.tx_ids.update(swap.tx_ids)

        if swap.aborted:
            outcome.stage = CycleStage.QUOTE_AND_GATE
            outcome.status = CycleStatus.ABORTED
            outcome.reason = swap.error or "price impact exceeded"
            outcome.operator_action = "Will retry next cycle"
            await self._reporter.price_impact_abort(swap.price_impact_pct, s.max_slippage, swap.input_amount)
            return

        if swap.dry_run:
            if self._bridged:
                expected = sendable_amount(swap.expected_output, convert(remaining, t.swap_output))
                outcome.burn = BurnResult(amount=expected, destination=self._ao.address, dry_run=True)
            await self._finish(outcome, CycleStatus.SIMULATED)
            return

        self._record_swap(swap)

        if swap.confirmation_unverified:
            outcome.status = CycleStatus.ABORTED
            outcome.reason = f"Swap output unverified: {swap.error}"
            outcome.operator_action = "Funds likely moved; next cycle recovers them. Do not swap manually"
            await self._reporter.swap_unverified(swap.tx_ids, swap.error or "")
            return

        acquired = swap.actual_output
        if acquired is None or acquired.raw == 0:
            raise SubmissionError("Swap confirmed but no output observed", tx_id=next(iter(swap.tx_ids.values()), None))

        if self._bridged:
            carried = await self._bridge_and_forward(
                outcome,
                sendable_amount(acquired, convert(remaining, t.swap_output)),
                remaining,
                recovery=False,
            )
            if carried is None:
                return
            moved, observed = carried
            status = CycleStatus.TOPPED_UP if observed else CycleStatus.TOPPED_UP_UNVERIFIED
        else:
            outcome.stage = CycleStage.TRANSFER
            moved = await self._forward(outcome, remaining, TransactionKind.LEDGER_TRANSFER, "transfer")
            status = CycleStatus.TOPPED_UP

        outcome.transferred = (outcome.transferred or TokenAmount.zero(t.target)) + moved
        await self._finish(outcome, status)

    async def _remaining_need(self, target: TokenAmount, needed: TokenAmount, sent: TokenAmount) -> TokenAmount:
        """Fresh need, capped by what the cycle has not already sent.

        A just-sent transfer may not be visible yet, so the fresh read alone
        could double-acquire.
        """
        fresh = (await self._oracle.get_balance(self._s.target_wallet_address, self._t.target)).amount
        fresh_need = needed_amount(target, fresh)
        unsent = needed_amount(needed, sent)
        return fresh_need if fresh_need < unsent else unsent

    async def _recover_source_chain(
        self, outcome: CycleOutcome, need: TokenAmount
    ) -> tuple[TokenAmount, bool] | None:
        """Bridge target token left on the swap ledger by an earlier failed burn."""
        t = self._t
        if need.raw == 0:
            return TokenAmount.zero(t.target), True

        stranded = (await self._oracle.get_balance(self._bridge.address, t.swap_output)).amount
        amount = sendable_amount(stranded, convert(need, t.swap_output))
        if amount.raw == 0:
            return TokenAmount.zero(t.target), True

        logger.info(f"[ORCH] Found {stranded} on {t.swap_output.ledger.value}, bridging {amount}")
        outcome.recovered_from_source_chain = amount
        if self._s.dry_run:
            return convert(amount, t.target), True
        return await self._bridge_and_forward(outcome, amount, need, recovery=True)

    async def _size_source(self, outcome: CycleOutcome, remaining: TokenAmount) -> TokenAmount | None:
        """Source amount for remaining, with buffer, rounded up. None if the wallet can't cover it."""
        s, t = self._s, self._t
        owner = self._executor.owner

        if t.gas is not None:
            gas, funds = await self._oracle.get_balances((owner, t.gas), (owner, t.source))
            outcome.gas_balance = gas.amount
            if gas.amount < TokenAmount.from_units(t.gas, s.min_eth_balance):
                await self._reporter.low_gas(gas.amount, s.min_eth_balance)
        else:
            funds = await self._oracle.get_balance(owner, t.source)
        outcome.source_balance = funds.amount

        price = await self._executor.reference_price(t.source, t.swap_output)
        buffer = 1 + s.usdc_buffer_pct / Decimal(100)
        source_needed = TokenAmount.from_units(t.source, remaining.units * price * buffer, round_up=True)

        logger.info("[ORCH] Swap calculation:")
        logger.info(f"├─ {t.target.symbol} needed: {remaining}")
        logger.info(f"├─ Price: 1 {t.swap_output.symbol} = {price:.6f} {t.source.symbol}")
        logger.info(f"├─ Buffer: {s.usdc_buffer_pct}%")
        logger.info(f"└─ {t.source.symbol} needed: {source_needed}")

        if funds.amount < source_needed:
            outcome.status = CycleStatus.ABORTED
            outcome.reason = f"Insufficient {t.source.symbol}: have {funds.amount}, need {source_needed}"
            outcome.operator_action = f"Fund the operating wallet with {t.source.symbol}"
            await self._reporter.insufficient_funds(funds.amount, source_needed)
            return None
        return source_needed

    async def _bridge_and_forward(
        self, outcome: CycleOutcome, amount: TokenAmount, need: TokenAmount, *, recovery: bool
    ) -> tuple[TokenAmount, bool] | None:
        """Burn, wait for the credit, forward what the AO wallet holds.

        Returns (forwarded, credit_observed), or None when the burn stranded funds.
        """
        s, t = self._s, self._t
        prefix = "recovery_" if recovery else ""

        outcome.stage = CycleStage.BRIDGE
        try:
            burn = await self._bridge.burn(amount, self._ao.address)
        except StrandedFundsError as e:
            outcome.status = CycleStatus.ABORTED
            outcome.reason = str(e)
            outcome.operator_action = operator_action(e, t.target.symbol)
            await self._reporter.stranded_funds(amount, str(e))
            return None

        outcome.burn = burn
        outcome.tx_ids[f"{prefix}burn"] = burn.tx_hash
        self._reporter.record(
            TransactionRecord(
                kind=TransactionKind.BRIDGE_BURN,
                chain=t.swap_output.ledger.value,
                from_token=t.swap_output.symbol,
                from_amount=burn.amount.units,
                to_token=t.target.symbol,
                to_amount=burn.amount.units,
                from_wallet=self._bridge.address,
                to_wallet=self._ao.address,
                tx_id=burn.tx_hash,
                base_tx_hash=burn.tx_hash,
                ao_destination=self._ao.address,
                gas_used=burn.gas_used,
                notes="Recovery of stranded balance" if recovery else "",
            )
        )

        outcome.stage = CycleStage.VERIFY
        expected = convert(burn.amount, t.target)
        wait = await self._verifier.wait_for_credit(
            self._ao.address,
            expected,
            max_wait_sec=s.bridge_max_wait_sec,
            poll_interval_sec=s.bridge_poll_interval_sec,
            tolerance_fraction=s.bridge_tolerance_pct / 100,
            max_age_minutes=s.bridge_max_age_minutes,
            on_poll=_log_poll,
            source_tx_id=burn.tx_hash,
        )
        outcome.credit_wait = wait
        if not wait.observed:
            await self._reporter.bridge_unverified(expected, wait.waited_sec, burn.tx_hash)

        # The burn is final either way: forward whatever actually arrived
        outcome.stage = CycleStage.TRANSFER
        kind = TransactionKind.RECOVERY_TRANSFER if recovery else TransactionKind.LEDGER_TRANSFER
        moved = await self._forward(outcome, need, kind, f"{prefix}bridge_transfer" if recovery else "transfer")
        if recovery and moved.raw:
            outcome.recovered = (outcome.recovered or TokenAmount.zero(t.target)) + moved
        return moved, wait.observed

    async def _forward(
        self, outcome: CycleOutcome, need: TokenAmount, kind: TransactionKind, tx_key: str
    ) -> TokenAmount:
        """Send min(fresh bot wallet balance, need) to the target wallet."""
        s, t = self._s, self._t
        if need.raw == 0:
            return TokenAmount.zero(t.target)

        held = (await self._oracle.get_balance(self._ao.address, t.target)).amount
        amount = sendable_amount(held, need)
        if amount.raw == 0:
            logger.info(f"[ORCH] Bot wallet holds no {t.target.symbol} to forward")
            return amount

        if s.dry_run:
            logger.info(f"[ORCH] [DRY RUN] Would transfer {amount} to {s.target_wallet_address}")
            return amount

        result = await self._ao.transfer(t.target.address, s.target_wallet_address, amount.raw)
        outcome.tx_ids[tx_key] = result.message_id
        logger.info(f"[ORCH] Transferred {amount} to {s.target_wallet_address}: {result.message_id}")
        self._reporter.record(
            TransactionRecord(
                kind=kind,
                chain=Ledger.AO.value,
                from_token=t.target.symbol,
                from_amount=amount.units,
                to_token=t.target.symbol,
                to_amount=amount.units,
                from_wallet=self._ao.address,
                to_wallet=s.target_wallet_address,
                tx_id=result.message_id,
                ao_destination=s.target_wallet_address,
            )
        )
        return amount

    def _record_swap(self, swap: SwapResult) -> None:
        quote = swap.quote
        received = swap.actual_output or quote.expected_output
        on_base = self._t.swap_output.ledger is Ledger.BASE
        tx = swap.tx_ids.get("swap") or swap.tx_ids.get("settle", "")
        self._reporter.record(
            TransactionRecord(
                kind=TransactionKind.SOURCE_SWAP,
                chain=self._t.swap_output.ledger.value,
                from_token=quote.input_token.symbol,
                from_amount=quote.input_amount.units,
                to_token=quote.output_token.symbol,
                to_amount=received.units,
                from_wallet=self._executor.owner,
                to_wallet=self._executor.owner,
                exchange_rate=quote.price,
                price_impact_pct=quote.price_impact_pct,
                tx_id=tx,
                base_tx_hash=tx if on_base else "",
                gas_used=swap.gas_used,
                order_id=swap.tx_ids.get("order", ""),
                settlement_id=swap.tx_ids.get("settle", ""),
                notes="" if swap.actual_output else "Output unverified",
            )
        )

    async def _finish(self, outcome: CycleOutcome, status: CycleStatus) -> None:
        outcome.status = status
        outcome.stage = CycleStage.DONE
        moved_funds = status in (
            CycleStatus.RECOVERED,
            CycleStatus.TOPPED_UP,
            CycleStatus.TOPPED_UP_UNVERIFIED,
        )
        if moved_funds and not self._s.dry_run:
            if self._s.state_update_wait_sec > 0:
                logger.info(f"[ORCH] Waiting {self._s.state_update_wait_sec:.0f}s for AO state to update...")
                await self._sleep(self._s.state_update_wait_sec)
            try:
                snap = await self._oracle.get_balance(self._s.target_wallet_address, self._t.target)
                outcome.balance_after = snap.amount
            except QueryError as e:
                logger.warning(f"[ORCH] Could not re-read target balance: {e}")
        elif outcome.balance_after is None:
            outcome.balance_after = outcome.balance_before
        await self._reporter.completed(outcome)


def _log_poll(progress: PollProgress) -> None:
    logger.info(f"[BRIDGE] Checking for credit (attempt {progress.attempt}, {progress.elapsed_sec:.0f}s elapsed)")
