"""Slack alerts via chat.postMessage.

Notifications are best-effort: a disabled or failing notifier logs and moves
on, it never raises into the cycle.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from decimal import Decimal

import httpx
from loguru import logger

from src.models.cycle import CycleOutcome, CycleStatus
from src.models.tokens import TokenAmount

SLACK_POST_URL = "https://slack.com/api/chat.postMessage"


class SlackNotifier:
    def __init__(
        self,
        *,
        token: str = "",
        channel: str = "",
        enabled: bool = False,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = token
        self._channel = channel
        self._enabled = enabled and bool(token) and bool(channel)
        self._http = http
        self._sent = 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def total_sent(self) -> int:
        return self._sent

    async def send(self, text: str) -> bool:
        """Post text to the channel. Returns True if Slack accepted it."""
        if not self._enabled:
            logger.debug("[SLACK] Notifications disabled, skipping message")
            return False

        if not self._http:
            self._http = httpx.AsyncClient(timeout=10)

        last_err = ""
        for attempt in range(2):
            try:
                resp = await self._http.post(
                    SLACK_POST_URL,
                    headers={"Authorization": f"Bearer {self._token}"},
                    json={"channel": self._channel, "text": text, "mrkdwn": True},
                )
                if resp.status_code == 429:
                    retry_after = int(resp.headers.get("Retry-After", "5"))
                    logger.warning(f"[SLACK] Rate limited, sleeping {retry_after}s")
                    await asyncio.sleep(retry_after)
                    last_err = "HTTP 429"
                    continue
                body = resp.json()
                if body.get("ok"):
                    self._sent += 1
                    return True
                last_err = body.get("error", f"HTTP {resp.status_code}")
                break
            except Exception as e:
                last_err = str(e)
                if attempt == 0:
                    await asyncio.sleep(1)

        logger.warning(f"[SLACK] Send failed: {last_err}")
        return False

    async def close(self) -> None:
        if self._http:
            await self._http.aclose()
            self._http = None


# ─── Message templates ───────────────────────────────────────────────


def _ts() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def _fmt(amount: TokenAmount | Decimal | None, places: int = 2) -> str:
    if amount is None:
        return "N/A"
    value = amount.units if isinstance(amount, TokenAmount) else amount
    return f"{value:,.{places}f}"


def format_cycle_start(
    target_wallet: str, current: TokenAmount, minimum: Decimal, target: Decimal, venue: str, dry_run: bool
) -> str:
    mode = " [DRY RUN]" if dry_run else ""
    return (
        f"🔎 *Balance Check Started{mode}*\n\n"
        f"*Target Wallet (AO):* `{target_wallet}`\n"
        f"• Current: {_fmt(current)} {current.token.symbol}\n"
        f"• Minimum: {_fmt(minimum)} {current.token.symbol}\n"
        f"• Target: {_fmt(target)} {current.token.symbol}\n"
        f"• Venue: {venue}\n\n"
        f"_{_ts()}_"
    )


def format_low_gas(balance: TokenAmount, minimum: Decimal) -> str:
    return (
        f"⚠️ *Low ETH Balance Alert*\n\n"
        f"Base wallet ETH balance is low!\n\n"
        f"• Current: {_fmt(balance, 6)} ETH\n"
        f"• Minimum: {_fmt(minimum, 6)} ETH\n\n"
        f"Please top up the Base wallet to ensure swaps can continue.\n\n"
        f"_{_ts()}_"
    )


def format_insufficient_funds(have: TokenAmount, need: TokenAmount) -> str:
    symbol = need.token.symbol
    return (
        f"⚠️ *Insufficient {symbol} Alert*\n\n"
        f"Operating wallet does not have enough {symbol} for the required swap!\n\n"
        f"• Current: {_fmt(have)} {symbol}\n"
        f"• Needed: {_fmt(need)} {symbol}\n"
        f"• Shortfall: {_fmt(need.units - have.units)} {symbol}\n\n"
        f"Please top up the wallet with {symbol}.\n\n"
        f"_{_ts()}_"
    )


def format_price_impact_abort(impact: Decimal, max_impact: Decimal, amount_in: TokenAmount) -> str:
    return (
        f"⚠️ *High Slippage Alert - Swap Aborted*\n\n"
        f"Swap was aborted due to excessive price impact.\n\n"
        f"• Price impact: {impact:.3f}%\n"
        f"• Max allowed: {max_impact:.1f}%\n"
        f"• Swap amount: {_fmt(amount_in)} {amount_in.token.symbol}\n\n"
        f"The swap will be retried on the next cycle. Consider:\n"
        f"• Splitting into smaller amounts\n"
        f"• Increasing MAX_SLIPPAGE setting\n"
        f"• Waiting for better liquidity\n\n"
        f"_{_ts()}_"
    )


def format_stranded_funds(amount: TokenAmount, error: str) -> str:
    return (
        f"🚨 *Funds Stranded on Source Chain*\n\n"
        f"The bridge burn failed after the swap succeeded.\n\n"
        f"• Amount: {_fmt(amount)} {amount.token.symbol}\n"
        f"• Error: {error}\n\n"
        f"{amount.token.symbol} stranded on source chain, will retry next cycle. "
        f"Check the Base wallet if this repeats.\n\n"
        f"_{_ts()}_"
    )


def format_bridge_unverified(expected: TokenAmount, waited_sec: float, burn_tx: str) -> str:
    return (
        f"⏳ *Bridge Credit Not Verified*\n\n"
        f"No matching Credit-Notice was observed on AO within {waited_sec:.0f}s.\n\n"
        f"• Expected: {_fmt(expected)} {expected.token.symbol}\n"
        f"• Burn TX: `{burn_tx or 'N/A'}`\n\n"
        f"The burn is final; forwarding whatever the bot wallet holds. "
        f"Check the bridge manually.\n\n"
        f"_{_ts()}_"
    )


def format_swap_unverified(tx_ids: dict[str, str], error: str) -> str:
    lines = "".join(f"• {name}: `{tx}`\n" for name, tx in tx_ids.items())
    return (
        f"⏳ *Swap Output Not Verified*\n\n"
        f"The swap was submitted but its output could not be measured.\n\n"
        f"{lines}"
        f"• Error: {error}\n\n"
        f"Funds likely moved. Do not swap manually; the next cycle recovers them.\n\n"
        f"_{_ts()}_"
    )


def format_error(operation: str, error: str, action: str = "") -> str:
    hint = action or "Please check the logs for more details."
    return (
        f"❌ *Error in Balance Maintainer*\n\n"
        f"*Operation:* {operation}\n\n"
        f"*Error:* {error}\n\n"
        f"{hint}\n\n"
        f"_{_ts()}_"
    )


def format_recovery_only(outcome: CycleOutcome) -> str:
    amount = outcome.transferred
    symbol = amount.token.symbol if amount else ""
    tx = outcome.tx_ids.get("recovery_transfer", "")
    return (
        f"🔄 *{symbol} Recovery Transfer Completed*\n\n"
        f"*Target Wallet (AO):* `{outcome.target_wallet}`\n\n"
        f"Transferred existing {symbol} from bot wallet to target.\n\n"
        f"*Transfer Details:*\n"
        f"• Amount: {_fmt(amount)} {symbol}\n"
        f"• Target balance before: {_fmt(outcome.balance_before)} {symbol}\n"
        f"• Target balance after: {_fmt(outcome.balance_after)} {symbol}\n"
        + (f"• TX: `{tx}`\n" if tx else "")
        + f"\n_{_ts()}_"
    )


def _swap_section(outcome: CycleOutcome, dry_run: bool) -> str:
    swap = outcome.swap
    if swap is None or swap.quote is None:
        return ""
    quote = swap.quote
    received = swap.actual_output or quote.expected_output
    verb = "Would swap" if dry_run else "Swapped"
    text = (
        f"*Swap ({quote.input_token.symbol} → {quote.output_token.symbol}):*\n"
        f"• {verb}: {_fmt(quote.input_amount)} {quote.input_token.symbol} → "
        f"{_fmt(received)} {quote.output_token.symbol}\n"
        f"• Price: 1 {quote.output_token.symbol} = {quote.price:.6f} {quote.input_token.symbol}\n"
        f"• Price impact: {quote.price_impact_pct:.3f}%\n"
    )
    if swap.gas_used:
        text += f"• Gas used: {swap.gas_used}\n"
    for name, tx in swap.tx_ids.items():
        text += f"• {name} TX: `{tx}`\n"
    return text + "\n"


def format_top_up(outcome: CycleOutcome) -> str:
    """Success summary, or simulation summary for dry runs."""
    dry_run = outcome.status is CycleStatus.SIMULATED
    symbol = outcome.balance_before.token.symbol if outcome.balance_before else ""
    if dry_run:
        header = "🔍 *[DRY RUN] Cross-Chain Top-up Simulation*"
    elif outcome.status is CycleStatus.TOPPED_UP_UNVERIFIED:
        header = "💱 *Top-up Executed (bridge credit unverified)*"
    else:
        header = "💱 *Top-up Executed Successfully*"

    text = (
        f"{header}\n\n"
        f"*Target Wallet (AO):* `{outcome.target_wallet}`\n\n"
        f"*{symbol} Balance:*\n"
        f"• Before: {_fmt(outcome.balance_before)} {symbol}\n"
    )
    if not dry_run:
        text += f"• After: {_fmt(outcome.balance_after)} {symbol}\n"
    text += f"• Target: {_fmt(outcome.target_balance)} {symbol}\n"
    text += f"• Needed: {_fmt(outcome.needed)} {symbol}\n\n"

    if outcome.recovered:
        text += f"*Bot Wallet Recovery:*\n• {_fmt(outcome.recovered)} {symbol}\n"
        if outcome.tx_ids.get("recovery_transfer"):
            text += f"• TX: `{outcome.tx_ids['recovery_transfer']}`\n"
        text += "\n"
    if outcome.recovered_from_source_chain:
        text += f"*Stranded Base Recovery:*\n• {_fmt(outcome.recovered_from_source_chain)} {symbol}\n\n"

    text += _swap_section(outcome, dry_run)

    if outcome.burn is not None:
        verb = "Would burn" if dry_run else "Burned"
        text += f"*Bridge (Burn → AO):*\n• {verb}: {_fmt(outcome.burn.amount)} {symbol}\n"
        if outcome.burn.gas_used:
            text += f"• Gas used: {outcome.burn.gas_used}\n"
        if outcome.burn.tx_hash:
            text += f"• TX: `{outcome.burn.tx_hash}`\n"
        if outcome.credit_wait is not None:
            seen = "observed" if outcome.credit_wait.observed else "NOT observed"
            text += f"• Credit: {seen} after {outcome.credit_wait.waited_sec:.0f}s\n"
        text += "\n"

    if outcome.transferred and not dry_run:
        text += f"*Transfer to Target:*\n• Transferred: {_fmt(outcome.transferred)} {symbol}\n"
        if outcome.tx_ids.get("transfer"):
            text += f"• TX: `{outcome.tx_ids['transfer']}`\n"
        text += "\n"

    if outcome.gas_balance is not None or outcome.source_balance is not None:
        text += "*Operating Wallet Balances:*\n"
        if outcome.gas_balance is not None:
            text += f"• {outcome.gas_balance.token.symbol}: {_fmt(outcome.gas_balance, 6)}\n"
        if outcome.source_balance is not None:
            text += f"• {outcome.source_balance.token.symbol}: {_fmt(outcome.source_balance)}\n"
        text += "\n"

    if dry_run:
        text += "⚠️ *This is a simulation - no actual transactions were executed*\n\n"
    return text + f"_{_ts()}_"
