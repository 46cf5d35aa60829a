"""Per-cycle working state. Lives for one run_cycle() call, never persisted."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from src.models.tokens import TokenAmount

if TYPE_CHECKING:
    from src.trading.bridge import BurnResult, CreditWaitResult
    from src.trading.swap import SwapResult


class CycleStage(str, enum.Enum):
    CHECK_TARGET = "check_target"
    CHECK_MIN_TRANSFER = "check_min_transfer"
    RECOVER_INTERMEDIATE = "recover_intermediate"
    CHECK_SOURCE_FUNDS = "check_source_funds"
    QUOTE_AND_GATE = "quote_and_gate"
    SWAP = "swap"
    BRIDGE = "bridge"
    VERIFY = "verify"
    TRANSFER = "transfer"
    DONE = "done"


class CycleStatus(str, enum.Enum):
    SUFFICIENT = "sufficient"
    SKIPPED_BELOW_MINIMUM = "skipped_below_minimum"
    RECOVERED = "recovered"
    TOPPED_UP = "topped_up"
    TOPPED_UP_UNVERIFIED = "topped_up_unverified"
    SIMULATED = "simulated"
    ABORTED = "aborted"


@dataclass
class CycleOutcome:
    """Everything one cycle decided and did, for reporting."""

    target_wallet: str
    status: CycleStatus = CycleStatus.ABORTED
    stage: CycleStage = CycleStage.CHECK_TARGET
    dry_run: bool = False
    balance_before: TokenAmount | None = None
    balance_after: TokenAmount | None = None
    target_balance: TokenAmount | None = None
    needed: TokenAmount | None = None
    recovered: TokenAmount | None = None
    recovered_from_source_chain: TokenAmount | None = None
    swap: SwapResult | None = None
    burn: BurnResult | None = None
    credit_wait: CreditWaitResult | None = None
    transferred: TokenAmount | None = None
    gas_balance: TokenAmount | None = None
    source_balance: TokenAmount | None = None
    tx_ids: dict[str, str] = field(default_factory=dict)
    reason: str = ""
    operator_action: str = ""

    @property
    def aborted(self) -> bool:
        return self.status is CycleStatus.ABORTED

    @property
    def submitted_anything(self) -> bool:
        return bool(self.tx_ids)
