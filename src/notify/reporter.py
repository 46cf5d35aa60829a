"""The one interface the orchestrator reports through: log, ledger, Slack.

Nothing here raises. A broken Slack token or a full disk must not turn a
successful top-up into a failed cycle.
"""

from __future__ import annotations

from decimal import Decimal

from loguru import logger

from src.models.cycle import CycleOutcome, CycleStatus
from src.models.ledger import TransactionRecord
from src.models.tokens import TokenAmount
from src.notify import slack
from src.notify.ledger import CsvTransactionLedger
from src.notify.slack import SlackNotifier


class EventReporter:
    def __init__(self, *, notifier: SlackNotifier, ledger: CsvTransactionLedger | None = None) -> None:
        self._notifier = notifier
        self._ledger = ledger

    async def _send(self, text: str) -> None:
        try:
            await self._notifier.send(text)
        except Exception as e:
            logger.warning(f"[SLACK] Notification failed: {e}")

    def record(self, record: TransactionRecord) -> None:
        if self._ledger is None:
            return
        try:
            self._ledger.append(record)
        except Exception as e:
            logger.error(f"[LEDGER] Failed to write {record.kind.value} record: {e}")

    async def cycle_start(
        self,
        target_wallet: str,
        current: TokenAmount,
        minimum: Decimal,
        target: Decimal,
        venue: str,
        dry_run: bool,
    ) -> None:
        logger.info(
            f"[ORCH] Cycle start: {target_wallet[:12]} holds {current} "
            f"(min {minimum}, target {target}, venue {venue}{', DRY RUN' if dry_run else ''})"
        )
        await self._send(slack.format_cycle_start(target_wallet, current, minimum, target, venue, dry_run))

    async def low_gas(self, balance: TokenAmount, minimum: Decimal) -> None:
        logger.warning(f"[ORCH] Low gas balance: {balance} < {minimum}")
        await self._send(slack.format_low_gas(balance, minimum))

    async def insufficient_funds(self, have: TokenAmount, need: TokenAmount) -> None:
        logger.warning(f"[ORCH] Insufficient {need.token.symbol}: have {have}, need {need}")
        await self._send(slack.format_insufficient_funds(have, need))

    async def price_impact_abort(self, impact: Decimal, max_impact: Decimal, amount_in: TokenAmount) -> None:
        logger.warning(f"[ORCH] Swap aborted: price impact {impact:.3f}% > {max_impact}%")
        await self._send(slack.format_price_impact_abort(impact, max_impact, amount_in))

    async def stranded_funds(self, amount: TokenAmount, error: str) -> None:
        logger.error(f"[ORCH] {amount} stranded on source chain: {error}")
        await self._send(slack.format_stranded_funds(amount, error))

    async def bridge_unverified(self, expected: TokenAmount, waited_sec: float, burn_tx: str) -> None:
        logger.warning(f"[ORCH] Bridge credit of {expected} not observed after {waited_sec:.0f}s")
        await self._send(slack.format_bridge_unverified(expected, waited_sec, burn_tx))

    async def swap_unverified(self, tx_ids: dict[str, str], error: str) -> None:
        logger.warning(f"[ORCH] Swap output unverified ({', '.join(tx_ids.values())}): {error}")
        await self._send(slack.format_swap_unverified(tx_ids, error))

    async def failure(self, outcome: CycleOutcome) -> None:
        logger.error(
            f"[ORCH] Cycle aborted at {outcome.stage.value}: {outcome.reason}"
            + (f" | action: {outcome.operator_action}" if outcome.operator_action else "")
        )
        await self._send(slack.format_error(outcome.stage.value, outcome.reason, outcome.operator_action))

    async def completed(self, outcome: CycleOutcome) -> None:
        """Summary for every non-aborted terminal state."""
        status = outcome.status
        logger.info(
            f"[ORCH] Cycle finished: {status.value} "
            f"(before={outcome.balance_before}, after={outcome.balance_after}, sent={outcome.transferred})"
        )
        if status in (CycleStatus.SUFFICIENT, CycleStatus.SKIPPED_BELOW_MINIMUM):
            return
        if status is CycleStatus.RECOVERED:
            await self._send(slack.format_recovery_only(outcome))
        else:
            await self._send(slack.format_top_up(outcome))
