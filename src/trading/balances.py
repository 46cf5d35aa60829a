"""Authoritative balance reads on Base and AO.

Never caches: every call is a fresh read producing a new snapshot.
Independent reads can be fanned out concurrently with get_balances().
"""

from __future__ import annotations

import asyncio

from loguru import logger

from src.chains.ao import AOClient
from src.chains.evm import BaseChainClient
from src.errors import QueryError
from src.models.tokens import BalanceSnapshot, Ledger, Token, TokenAmount


class BalanceOracle:
    def __init__(self, *, ao: AOClient, base: BaseChainClient | None = None) -> None:
        self._ao = ao
        self._base = base

    async def get_balance(self, owner: str, token: Token) -> BalanceSnapshot:
        """Read owner's balance of token. Raises QueryError on any read failure."""
        if token.ledger is Ledger.AO:
            if token.is_native:
                raw = await self._ao.get_native_balance(owner)
            else:
                raw = await self._ao.get_token_balance(token.address, owner)
        else:
            if self._base is None:
                raise QueryError(f"No Base client configured for {token}")
            if token.is_native:
                raw = await self._base.get_native_balance(owner)
            else:
                raw = await self._base.get_token_balance(token.address, owner)

        snapshot = BalanceSnapshot(owner=owner, amount=TokenAmount.from_raw(token, raw))
        logger.debug(f"[BALANCE] {owner[:12]} {snapshot.amount}")
        return snapshot

    async def get_balances(self, *queries: tuple[str, Token]) -> list[BalanceSnapshot]:
        """Concurrent independent reads, results in query order.

        Any single failure raises QueryError for the whole batch.
        """
        results = await asyncio.gather(
            *(self.get_balance(owner, token) for owner, token in queries)
        )
        return list(results)
