"""Price discovery: constant-product pool quotes and aggregator routes.

Quotes are advisory: nothing here mutates state. A Quote is created fresh for
each swap attempt and never reused, because reserves and routes shift.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Any, Protocol

import httpx
from loguru import logger

from src.chains.ao import AOClient, tags_to_dict
from src.errors import QueryError, QuoteUnavailable, SubmissionError
from src.models.tokens import Token, TokenAmount

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

KYBERSWAP_CHAIN = "base"
ROUTE_DEADLINE_SEC = 1200  # 20 minutes
REFERENCE_PROBE_UNITS = Decimal("100")  # input units used to probe the aggregator price


@dataclass(frozen=True)
class Quote:
    """One priced swap proposal.

    price is input units per output unit (e.g. USDC per ARIO) at execution.
    route is opaque venue data needed to submit exactly this route.
    """

    input_amount: TokenAmount
    expected_output: TokenAmount
    price_impact_pct: Decimal
    price: Decimal
    source: str
    route: dict[str, Any] = field(default_factory=dict)
    created_at: float = field(default_factory=time.monotonic)

    @property
    def input_token(self) -> Token:
        return self.input_amount.token

    @property
    def output_token(self) -> Token:
        return self.expected_output.token


class QuoteClient(Protocol):
    async def get_quote(self, input_amount: TokenAmount, output_token: Token) -> Quote: ...

    async def get_price(self, input_token: Token, output_token: Token) -> Decimal: ...


def constant_product_output(
    reserve_in: int, reserve_out: int, amount_in: int, fee_fraction: Decimal
) -> int:
    """out = Rout - Rin*Rout / (Rin + amount_in*(1-f)), floored to smallest units."""
    if reserve_in <= 0 or reserve_out <= 0:
        raise QuoteUnavailable("Pool has no liquidity")
    effective_in = Decimal(amount_in) * (Decimal(1) - fee_fraction)
    rin = Decimal(reserve_in)
    rout = Decimal(reserve_out)
    out = rout - (rin * rout) / (rin + effective_in)
    return int(out.to_integral_value(rounding=ROUND_FLOOR))


def constant_product_quote(
    reserve_in: int,
    reserve_out: int,
    input_amount: TokenAmount,
    output_token: Token,
    fee_fraction: Decimal,
) -> Quote:
    """Quote a swap against pool reserves (both in smallest units)."""
    if input_amount.raw <= 0:
        raise QuoteUnavailable("Input amount must be positive")
    out_raw = constant_product_output(reserve_in, reserve_out, input_amount.raw, fee_fraction)
    if out_raw <= 0:
        raise QuoteUnavailable("Swap output rounds to zero")

    expected = TokenAmount.from_raw(output_token, out_raw)
    in_units = input_amount.units
    # Output units per input unit
    spot = (Decimal(reserve_out).scaleb(-output_token.decimals)) / (
        Decimal(reserve_in).scaleb(-input_amount.token.decimals)
    )
    execution = expected.units / in_units
    impact = (spot - execution) / spot * 100

    return Quote(
        input_amount=input_amount,
        expected_output=expected,
        price_impact_pct=impact,
        price=in_units / expected.units,
        source="permaswap-pool",
        route={"reserve_in": str(reserve_in), "reserve_out": str(reserve_out)},
    )


class PermaswapQuoteClient:
    """Reads reserves from a Permaswap AO pool and prices swaps locally."""

    def __init__(self, *, ao: AOClient, pool_id: str, fee_pct: Decimal = Decimal("0.3")) -> None:
        self._ao = ao
        self._pool_id = pool_id
        self._fee_fraction = fee_pct / 100

    @property
    def pool_id(self) -> str:
        return self._pool_id

    async def get_pool_info(self) -> dict[str, str]:
        messages = await self._ao.dry_run(self._pool_id, {"Action": "Info"})
        if not messages:
            raise QueryError(f"No Info reply from pool {self._pool_id[:12]}")
        info = tags_to_dict(messages[0].get("Tags"))
        logger.debug(
            f"[QUOTE] Pool info: PX={info.get('PX')} PY={info.get('PY')} "
            f"X={info.get('SymbolX')} Y={info.get('SymbolY')} Fee={info.get('Fee')}"
        )
        return info

    async def get_reserves(self, input_token: Token, output_token: Token) -> tuple[int, int]:
        """(reserve_in, reserve_out) in smallest units for this swap direction."""
        info = await self.get_pool_info()
        if not info.get("PX") or not info.get("PY"):
            raise QuoteUnavailable(f"Pool {self._pool_id[:12]} reported no reserves")
        try:
            px, py = int(info["PX"]), int(info["PY"])
        except ValueError as e:
            raise QuoteUnavailable(f"Pool {self._pool_id[:12]} reported unparseable reserves") from e
        if px <= 0 or py <= 0:
            raise QuoteUnavailable(f"Pool {self._pool_id[:12]} has no liquidity")
        x, y = info.get("X"), info.get("Y")

        # Pools that omit X/Y are the source/target pair: X is the source side
        if not x and not y:
            return px, py
        if input_token.address == x and output_token.address == y:
            return px, py
        if input_token.address == y and output_token.address == x:
            return py, px
        raise QuoteUnavailable(
            f"Pool {self._pool_id[:12]} does not trade {input_token.symbol}/{output_token.symbol}"
        )

    async def get_quote(self, input_amount: TokenAmount, output_token: Token) -> Quote:
        reserve_in, reserve_out = await self.get_reserves(input_amount.token, output_token)
        quote = constant_product_quote(
            reserve_in, reserve_out, input_amount, output_token, self._fee_fraction
        )
        logger.info("[QUOTE] Permaswap quote:")
        logger.info(f"├─ Input: {input_amount}")
        logger.info(f"├─ Expected output: {quote.expected_output}")
        logger.info(f"├─ Price: 1 {output_token.symbol} = {quote.price:.6f} {input_amount.token.symbol}")
        logger.info(f"└─ Price impact: {quote.price_impact_pct:.3f}%")
        return quote

    async def get_price(self, input_token: Token, output_token: Token) -> Decimal:
        """Spot price, input units per output unit."""
        reserve_in, reserve_out = await self.get_reserves(input_token, output_token)
        return Decimal(reserve_in).scaleb(-input_token.decimals) / Decimal(reserve_out).scaleb(
            -output_token.decimals
        )


class KyberSwapQuoteClient:
    """KyberSwap aggregator on Base. Price impact is taken verbatim from the route."""

    def __init__(
        self,
        *,
        api_url: str = "https://aggregator-api.kyberswap.com",
        client_id: str = "balance-maintainar-bot",
        chain: str = KYBERSWAP_CHAIN,
    ) -> None:
        self._base_url = f"{api_url.rstrip('/')}/{chain}/api/v1"
        self._client_id = client_id
        self._http = httpx.AsyncClient(timeout=15.0, headers={"x-client-id": client_id})

    async def get_quote(self, input_amount: TokenAmount, output_token: Token) -> Quote:
        params = {
            "tokenIn": input_amount.token.address,
            "tokenOut": output_token.address,
            "amountIn": str(input_amount.raw),
            "saveGas": "false",
            "gasInclude": "true",
        }
        data = await self._request("GET", f"{self._base_url}/routes", params=params)
        if data.get("code") != 0 or not (data.get("data") or {}).get("routeSummary"):
            raise QuoteUnavailable(f"KyberSwap route not found: {data.get('message') or 'No route available'}")

        route_summary = data["data"]["routeSummary"]
        router = data["data"].get("routerAddress", "")
        impact_raw = route_summary.get("priceImpact")
        if impact_raw in (None, ""):
            raise QuoteUnavailable("KyberSwap route carries no price impact")

        try:
            amount_in = TokenAmount.from_raw(input_amount.token, route_summary.get("amountIn", input_amount.raw))
            expected = TokenAmount.from_raw(output_token, route_summary.get("amountOut", 0))
            impact = Decimal(str(impact_raw))
        except (TypeError, ValueError, ArithmeticError) as e:
            raise QuoteUnavailable(f"KyberSwap route has malformed amounts: {e}") from e
        if expected.raw <= 0:
            raise QuoteUnavailable("KyberSwap route returns zero output")

        quote = Quote(
            input_amount=amount_in,
            expected_output=expected,
            price_impact_pct=impact,
            price=amount_in.units / expected.units,
            source="kyberswap",
            route={"routeSummary": route_summary, "routerAddress": router},
        )
        logger.info("[QUOTE] KyberSwap route found:")
        logger.info(f"├─ Input: {amount_in}")
        logger.info(f"├─ Expected output: {expected}")
        logger.info(f"├─ Price: 1 {output_token.symbol} = {quote.price:.6f} {amount_in.token.symbol}")
        logger.info(f"├─ Price impact: {quote.price_impact_pct:.3f}%")
        logger.info(f"└─ Router: {router}")
        return quote

    async def get_price(self, input_token: Token, output_token: Token) -> Decimal:
        """Effective price from a small reference route, input units per output unit."""
        probe = TokenAmount.from_units(input_token, REFERENCE_PROBE_UNITS)
        quote = await self.get_quote(probe, output_token)
        return quote.price

    async def build_route(self, route_summary: dict, *, sender: str, slippage_bps: int) -> dict:
        """Encode calldata for an exact route. Nothing is submitted here."""
        payload = {
            "routeSummary": route_summary,
            "sender": sender,
            "recipient": sender,
            "slippageTolerance": slippage_bps,
            "deadline": int(time.time()) + ROUTE_DEADLINE_SEC,
            "source": self._client_id,
        }
        try:
            data = await self._request("POST", f"{self._base_url}/route/build", json=payload)
        except (QueryError, QuoteUnavailable) as e:
            raise SubmissionError(f"KyberSwap encode failed: {e}") from e
        if data.get("code") != 0 or not data.get("data"):
            raise SubmissionError(f"KyberSwap encode failed: {data.get('message') or 'Unknown error'}")
        return data["data"]

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        last_error = ""
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._http.request(method, url, **kwargs)

                if resp.status_code == 429 or resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    if attempt < MAX_RETRIES:
                        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                        logger.debug(f"[QUOTE] KyberSwap {last_error}, retry in {delay}s")
                        await asyncio.sleep(delay)
                        continue
                    break

                if resp.status_code == 400 or resp.status_code == 404:
                    raise QuoteUnavailable(f"KyberSwap {resp.status_code}: {resp.text[:200]}")
                if resp.status_code != 200:
                    raise QueryError(f"KyberSwap unexpected HTTP {resp.status_code}")
                try:
                    return resp.json()
                except (json.JSONDecodeError, ValueError) as e:
                    raise QueryError(f"KyberSwap returned invalid JSON from {url}") from e

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = f"{type(e).__name__}: {e}"
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[QUOTE] KyberSwap {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)

        raise QueryError(f"KyberSwap request failed after {MAX_RETRIES + 1} attempts: {last_error}")

    async def close(self) -> None:
        await self._http.aclose()
