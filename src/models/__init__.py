from src.models.cycle import CycleOutcome, CycleStage, CycleStatus
from src.models.ledger import TransactionKind, TransactionRecord
from src.models.tokens import BalanceSnapshot, Ledger, Token, TokenAmount

__all__ = [
    "Ledger",
    "Token",
    "TokenAmount",
    "BalanceSnapshot",
    "TransactionKind",
    "TransactionRecord",
    "CycleStage",
    "CycleStatus",
    "CycleOutcome",
]
