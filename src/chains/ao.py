"""AO client: compute-unit reads and signed message-unit submissions.

Reads go through the CU dry-run endpoint (no state change, no signature).
Writes are signed ANS-104 data items posted to the MU; their outcome is
read back from the CU result endpoint.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field

import httpx
from loguru import logger

from src.chains.ans104 import ArweaveSigner
from src.errors import QueryError, SubmissionError

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]

WINSTON_PER_AR = 10**12

# Tags aoconnect attaches to every message
AO_PROTOCOL_TAGS = [
    ("Data-Protocol", "ao"),
    ("Variant", "ao.TN.1"),
    ("Type", "Message"),
    ("SDK", "aoconnect"),
]


def tags_to_dict(tags: list[dict] | None) -> dict[str, str]:
    return {t.get("name", ""): t.get("value", "") for t in tags or []}


@dataclass
class MessageResult:
    """CU evaluation of one message."""

    message_id: str
    messages: list[dict] = field(default_factory=list)
    error: str | None = None

    def first_tags(self) -> dict[str, str]:
        return tags_to_dict(self.messages[0].get("Tags")) if self.messages else {}

    def actions(self) -> list[str]:
        return [tags_to_dict(m.get("Tags")).get("Action", "") for m in self.messages]


class AOClient:
    """HTTP access to one AO compute unit, message unit and Arweave gateway."""

    def __init__(
        self,
        *,
        cu_url: str,
        mu_url: str,
        gateway_url: str,
        signer: ArweaveSigner | None = None,
    ) -> None:
        self._cu_url = cu_url.rstrip("/")
        self._mu_url = mu_url.rstrip("/")
        self._gateway_url = gateway_url.rstrip("/")
        self._signer = signer
        self._http = httpx.AsyncClient(timeout=30.0)

    @property
    def address(self) -> str:
        if self._signer is None:
            raise ValueError("AO wallet not loaded")
        return self._signer.address

    # ─── Reads ────────────────────────────────────────────────────────

    async def dry_run(self, process_id: str, tags: dict[str, str], data: str = "") -> list[dict]:
        """Evaluate a read-only message against a process. Returns its Messages."""
        payload = {
            "Id": "1234",
            "Target": process_id,
            "Owner": self._signer.address if self._signer else "1234",
            "Anchor": "0",
            "Data": data or "1234",
            "Tags": [{"name": k, "value": v} for k, v in tags.items()]
            + [{"name": n, "value": v} for n, v in AO_PROTOCOL_TAGS],
        }
        url = f"{self._cu_url}/dry-run"
        body = await self._request_json("POST", url, params={"process-id": process_id}, json=payload)
        if body.get("Error"):
            raise QueryError(f"Dry-run {tags.get('Action', '?')} on {process_id[:12]} failed: {body['Error']}")
        return body.get("Messages") or []

    async def get_result(self, process_id: str, message_id: str) -> MessageResult:
        url = f"{self._cu_url}/result/{message_id}"
        body = await self._request_json("GET", url, params={"process-id": process_id})
        error = body.get("Error") or None
        return MessageResult(
            message_id=message_id,
            messages=body.get("Messages") or [],
            error=str(error) if error else None,
        )

    async def get_token_balance(self, process_id: str, owner: str) -> int:
        """Token-process balance in smallest units."""
        messages = await self.dry_run(process_id, {"Action": "Balance", "Target": owner})
        if not messages:
            raise QueryError(f"No Balance reply from {process_id[:12]}")
        reply = messages[0]
        raw = reply.get("Data") or tags_to_dict(reply.get("Tags")).get("Balance") or "0"
        try:
            return int(str(raw).split(".")[0])
        except ValueError as e:
            raise QueryError(f"Unparseable balance {raw!r} from {process_id[:12]}") from e

    async def get_native_balance(self, owner: str) -> int:
        """AR balance in winston."""
        url = f"{self._gateway_url}/wallet/{owner}/balance"
        text = await self._request_text("GET", url)
        try:
            return int(text.strip())
        except ValueError as e:
            raise QueryError(f"Unparseable AR balance {text[:40]!r}") from e

    async def graphql(self, query: str, variables: dict | None = None) -> dict:
        """Query the gateway GraphQL index. Returns the data object."""
        url = f"{self._gateway_url}/graphql"
        body = await self._request_json("POST", url, json={"query": query, "variables": variables or {}})
        if body.get("errors"):
            raise QueryError(f"GraphQL error: {body['errors'][0].get('message', body['errors'])}")
        return body.get("data") or {}

    # ─── Writes ───────────────────────────────────────────────────────

    async def send_message(self, process_id: str, tags: dict[str, str], data: str = "") -> str:
        """Sign and post a message to the MU. Returns the message id."""
        if self._signer is None:
            raise SubmissionError("AO wallet not loaded, cannot sign messages")

        item = self._signer.create_data_item(
            data.encode() if data else b"1234",
            target=process_id,
            tags=list(tags.items()) + AO_PROTOCOL_TAGS,
        )
        try:
            resp = await self._http.post(
                self._mu_url,
                content=item.raw,
                headers={
                    "Content-Type": "application/octet-stream",
                    "Accept": "application/json",
                },
            )
        except (httpx.TimeoutException, httpx.ConnectError) as e:
            raise SubmissionError(f"MU unreachable: {e}", tx_id=item.id) from e

        if resp.status_code >= 400:
            raise SubmissionError(f"MU rejected message: HTTP {resp.status_code}", tx_id=item.id)

        logger.debug(f"[AO] Message {item.id} sent to {process_id[:12]} ({tags.get('Action', '?')})")
        return item.id

    async def transfer(self, process_id: str, recipient: str, quantity_raw: int) -> MessageResult:
        """Transfer tokens and confirm the process did not answer with an error."""
        if quantity_raw <= 0:
            raise SubmissionError(f"Refusing to transfer non-positive quantity {quantity_raw}")

        message_id = await self.send_message(
            process_id,
            {"Action": "Transfer", "Recipient": recipient, "Quantity": str(quantity_raw)},
        )
        try:
            result = await self.get_result(process_id, message_id)
        except QueryError as e:
            raise SubmissionError(f"Transfer sent but result unreadable: {e}", tx_id=message_id) from e

        if result.error or "Transfer-Error" in result.actions():
            reason = result.error or result.first_tags().get("Error", "Transfer-Error")
            raise SubmissionError(f"Transfer failed: {reason}", tx_id=message_id)

        logger.info(f"[AO] Transfer {quantity_raw} of {process_id[:12]} to {recipient[:12]}: {message_id}")
        return result

    # ─── HTTP ─────────────────────────────────────────────────────────

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        last_error = ""
        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = await self._http.request(method, url, **kwargs)
                if resp.status_code == 429 or resp.status_code >= 500:
                    last_error = f"HTTP {resp.status_code}"
                    if attempt < MAX_RETRIES:
                        delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                        logger.debug(f"[AO] {last_error} from {url}, retry in {delay}s")
                        await asyncio.sleep(delay)
                        continue
                    break
                if resp.status_code != 200:
                    raise QueryError(f"{url} returned HTTP {resp.status_code}")
                return resp
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = f"{type(e).__name__}: {e}"
                if attempt < MAX_RETRIES:
                    delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
                    logger.debug(f"[AO] {type(e).__name__}, retry in {delay}s")
                    await asyncio.sleep(delay)
        raise QueryError(f"{url} failed after {MAX_RETRIES + 1} attempts: {last_error}")

    async def _request_json(self, method: str, url: str, **kwargs) -> dict:
        resp = await self._request(method, url, **kwargs)
        try:
            return resp.json()
        except (json.JSONDecodeError, ValueError) as e:
            raise QueryError(f"Invalid JSON from {url}") from e

    async def _request_text(self, method: str, url: str, **kwargs) -> str:
        resp = await self._request(method, url, **kwargs)
        return resp.text

    async def close(self) -> None:
        await self._http.aclose()
