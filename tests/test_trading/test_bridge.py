"""Tests for the Base burn and AO credit verification.

The GraphQL index is mocked; a fake clock drives the polling loop so
timeouts are exercised without real waiting.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.chains.evm import TxReceipt
from src.errors import InsufficientFunds, QueryError, StrandedFundsError, SubmissionError
from src.models.tokens import BalanceSnapshot, TokenAmount
from src.trading.bridge import BASE_BRIDGE_AO_ADDRESS, BaseBridge, BridgeVerifier, PollProgress
from tests.factories import ARIO_AO, ARIO_BASE, BASE_ADDRESS, BOT_WALLET

NOW = 1_700_000_000.0


class FakeClock:
    """Wall clock advanced only by the fake sleep."""

    def __init__(self, start: float = NOW) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _notice(tx_id: str, quantity: int, timestamp: float | None = NOW - 60) -> dict:
    block = {"timestamp": int(timestamp), "height": 1_500_000} if timestamp is not None else None
    return {
        "node": {
            "id": tx_id,
            "tags": [
                {"name": "Action", "value": "Credit-Notice"},
                {"name": "Quantity", "value": str(quantity)},
                {"name": "Sender", "value": BASE_BRIDGE_AO_ADDRESS},
            ],
            "block": block,
        }
    }


def _index(*edges: dict) -> dict:
    return {"transactions": {"edges": list(edges)}}


# ── Burn ──────────────────────────────────────────────────────────────


class TestBaseBridgeBurn:
    """Fresh balance check, then burn; failures strand funds."""

    @pytest.fixture
    def base(self) -> MagicMock:
        base = MagicMock()
        base.address = BASE_ADDRESS
        base.burn = AsyncMock(return_value=TxReceipt("0xburn", 10, 60_000))
        return base

    def _oracle(self, raw: int) -> MagicMock:
        o = MagicMock()
        o.get_balance = AsyncMock(return_value=BalanceSnapshot(BASE_ADDRESS, TokenAmount.from_raw(ARIO_BASE, raw)))
        return o

    @pytest.mark.asyncio
    async def test_burn_success(self, base):
        bridge = BaseBridge(base=base, oracle=self._oracle(60_000_000), token=ARIO_BASE)
        result = await bridge.burn(TokenAmount.from_raw(ARIO_BASE, 50_000_000), BOT_WALLET)
        assert result.tx_hash == "0xburn"
        assert result.gas_used == 60_000
        base.burn.assert_awaited_once_with(ARIO_BASE.address, 50_000_000, BOT_WALLET)

    @pytest.mark.asyncio
    async def test_insufficient_balance_blocks_submission(self, base):
        bridge = BaseBridge(base=base, oracle=self._oracle(10), token=ARIO_BASE)
        with pytest.raises(InsufficientFunds) as exc:
            await bridge.burn(TokenAmount.from_raw(ARIO_BASE, 50), BOT_WALLET)
        assert exc.value.have.raw == 10
        base.burn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_revert_is_stranded_funds(self, base):
        base.burn.side_effect = SubmissionError("burn transaction reverted", tx_id="0xrev")
        bridge = BaseBridge(base=base, oracle=self._oracle(100), token=ARIO_BASE)
        with pytest.raises(StrandedFundsError) as exc:
            await bridge.burn(TokenAmount.from_raw(ARIO_BASE, 50), BOT_WALLET)
        assert exc.value.tx_id == "0xrev"

    @pytest.mark.asyncio
    async def test_dry_run_checks_but_does_not_burn(self, base):
        bridge = BaseBridge(base=base, oracle=self._oracle(100), token=ARIO_BASE)
        result = await bridge.burn(TokenAmount.from_raw(ARIO_BASE, 50), BOT_WALLET, dry_run=True)
        assert result.dry_run is True
        assert result.tx_hash == ""
        base.burn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, base):
        bridge = BaseBridge(base=base, oracle=self._oracle(100), token=ARIO_BASE)
        with pytest.raises(SubmissionError):
            await bridge.burn(TokenAmount.zero(ARIO_BASE), BOT_WALLET)


# ── Credit verification ──────────────────────────────────────────────


class TestVerifyCredit:
    """Amount tolerance and age window on Credit-Notice lookups."""

    @pytest.fixture
    def ao(self) -> MagicMock:
        ao = MagicMock()
        ao.graphql = AsyncMock(return_value=_index())
        return ao

    def _verifier(self, ao, clock=None) -> BridgeVerifier:
        return BridgeVerifier(ao=ao, token=ARIO_AO, clock=clock or FakeClock(), sleep=AsyncMock())

    @pytest.mark.asyncio
    async def test_query_filters(self, ao):
        await self._verifier(ao).verify_credit(BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000))
        variables = ao.graphql.call_args.args[1]
        assert variables == {
            "recipients": [BOT_WALLET],
            "process": ARIO_AO.address,
            "sender": BASE_BRIDGE_AO_ADDRESS,
            "first": 10,
        }

    @pytest.mark.asyncio
    async def test_no_notices(self, ao):
        assert await self._verifier(ao).verify_credit(BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000)) is None

    @pytest.mark.asyncio
    async def test_match_within_tolerance(self, ao):
        ao.graphql.return_value = _index(_notice("other", 5_000_000), _notice("tx-1", 49_600_000_000))
        credit = await self._verifier(ao).verify_credit(
            BOT_WALLET, TokenAmount.from_units(ARIO_AO, 50_000), tolerance_fraction=Decimal("0.01"), source_tx_id="0xburn"
        )
        assert credit.confirmation_id == "tx-1"
        assert credit.amount.raw == 49_600_000_000
        assert credit.source_tx_id == "0xburn"
        assert credit.destination == BOT_WALLET

    @pytest.mark.asyncio
    async def test_outside_tolerance_rejected(self, ao):
        ao.graphql.return_value = _index(_notice("tx-1", 49_000_000_000))
        credit = await self._verifier(ao).verify_credit(
            BOT_WALLET, TokenAmount.from_units(ARIO_AO, 50_000), tolerance_fraction=Decimal("0.01")
        )
        assert credit is None

    @pytest.mark.asyncio
    async def test_too_old_skipped(self, ao):
        ao.graphql.return_value = _index(_notice("old", 1000, timestamp=NOW - 31 * 60))
        credit = await self._verifier(ao).verify_credit(
            BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000), max_age_minutes=30
        )
        assert credit is None

    @pytest.mark.asyncio
    async def test_pending_without_block_accepted(self, ao):
        ao.graphql.return_value = _index(_notice("pending", 1000, timestamp=None))
        credit = await self._verifier(ao).verify_credit(BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000))
        assert credit.confirmation_id == "pending"

    @pytest.mark.asyncio
    async def test_recent_credits(self, ao):
        ao.graphql.return_value = _index(_notice("a", 1), _notice("b", 2))
        credits = await self._verifier(ao).recent_credits(BOT_WALLET, limit=2)
        assert [c.confirmation_id for c in credits] == ["a", "b"]
        assert ao.graphql.call_args.args[1]["first"] == 2


class TestWaitForCredit:
    """Bounded polling that degrades to observed=False."""

    @pytest.fixture
    def ao(self) -> MagicMock:
        ao = MagicMock()
        ao.graphql = AsyncMock(return_value=_index())
        return ao

    @pytest.mark.asyncio
    async def test_timeout_returns_unobserved(self, ao):
        clock = FakeClock()
        verifier = BridgeVerifier(ao=ao, token=ARIO_AO, clock=clock, sleep=clock.sleep)
        result = await verifier.wait_for_credit(
            BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000), max_wait_sec=100, poll_interval_sec=30
        )
        assert result.observed is False
        assert result.credit is None
        assert 100 <= result.waited_sec <= 130
        assert result.attempts == 4
        assert clock.sleeps == [30, 30, 30, 10]

    @pytest.mark.asyncio
    async def test_observed_on_later_poll(self, ao):
        clock = FakeClock()
        ao.graphql.side_effect = [_index(), _index(_notice("tx-9", 1000, timestamp=clock.now))]
        verifier = BridgeVerifier(ao=ao, token=ARIO_AO, clock=clock, sleep=clock.sleep)
        result = await verifier.wait_for_credit(
            BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000), max_wait_sec=600, poll_interval_sec=30
        )
        assert result.observed is True
        assert result.credit.confirmation_id == "tx-9"
        assert result.attempts == 2
        assert result.waited_sec == 30

    @pytest.mark.asyncio
    async def test_progress_reported_each_poll(self, ao):
        clock = FakeClock()
        seen: list[PollProgress] = []
        verifier = BridgeVerifier(ao=ao, token=ARIO_AO, clock=clock, sleep=clock.sleep)
        await verifier.wait_for_credit(
            BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000), max_wait_sec=60, poll_interval_sec=30, on_poll=seen.append
        )
        assert [p.attempt for p in seen] == [1, 2]
        assert [p.elapsed_sec for p in seen] == [0, 30]

    @pytest.mark.asyncio
    async def test_observer_errors_do_not_change_flow(self, ao):
        clock = FakeClock()
        verifier = BridgeVerifier(ao=ao, token=ARIO_AO, clock=clock, sleep=clock.sleep)

        def broken(progress: PollProgress) -> None:
            raise RuntimeError("observer bug")

        result = await verifier.wait_for_credit(
            BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000), max_wait_sec=60, poll_interval_sec=30, on_poll=broken
        )
        assert result.observed is False
        assert result.attempts == 2

    @pytest.mark.asyncio
    async def test_index_errors_count_as_not_found(self, ao):
        clock = FakeClock()
        ao.graphql.side_effect = QueryError("gateway down")
        verifier = BridgeVerifier(ao=ao, token=ARIO_AO, clock=clock, sleep=clock.sleep)
        result = await verifier.wait_for_credit(
            BOT_WALLET, TokenAmount.from_raw(ARIO_AO, 1000), max_wait_sec=60, poll_interval_sec=30
        )
        assert result.observed is False
