"""Base (EVM) wallet: token reads, raw transactions and bridge burns.

Sync web3.py calls are wrapped in run_in_executor so the cycle's event loop
keeps running while a receipt is awaited. Private key is loaded ONCE and
never logged; only the address appears in logs and __repr__.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

from eth_account import Account
from loguru import logger
from web3 import Web3

from src.errors import QueryError, SubmissionError

MAX_UINT256 = 2**256 - 1
GAS_BUFFER = 1.2  # 20% on top of estimate

# Minimal ABIs, only the functions we call
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# ARIO on Base: burn(amount, arweaveAddress) triggers the AO mint
ARIO_BURN_ABI = ERC20_ABI + [
    {
        "inputs": [
            {"name": "amount", "type": "uint256"},
            {"name": "arweaveAddress", "type": "string"},
        ],
        "name": "burn",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


@dataclass
class TxReceipt:
    """Confirmed EVM transaction."""

    tx_hash: str
    block_number: int
    gas_used: int
    effective_gas_price: int = 0

    @property
    def fee_wei(self) -> int:
        return self.gas_used * self.effective_gas_price


class BaseChainClient:
    """Signs and submits transactions for one Base wallet."""

    def __init__(
        self,
        *,
        rpc_url: str,
        private_key: str,
        receipt_timeout: int = 180,
        web3: Web3 | None = None,
    ) -> None:
        if not private_key:
            raise ValueError("Base private key is empty")
        if not rpc_url and web3 is None:
            raise ValueError("RPC URL is empty")

        self._w3 = web3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 30}))
        self._account = Account.from_key(private_key)
        self._receipt_timeout = receipt_timeout
        self._contracts: dict[str, Any] = {}
        logger.info(f"[BASE] Loaded wallet: {self.address}")

    def __repr__(self) -> str:
        return f"BaseChainClient(address={self.address})"

    @property
    def address(self) -> str:
        return self._account.address

    async def _run(self, fn: Callable, *args: Any) -> Any:
        return await asyncio.get_running_loop().run_in_executor(None, partial(fn, *args))

    def _contract(self, address: str, kind: str = "erc20") -> Any:
        checksum = Web3.to_checksum_address(address)
        key = f"{checksum}:{kind}"
        contract = self._contracts.get(key)
        if contract is None:
            abi = ARIO_BURN_ABI if kind == "ario" else ERC20_ABI
            contract = self._w3.eth.contract(address=checksum, abi=abi)
            self._contracts[key] = contract
        return contract

    # ─── Reads ────────────────────────────────────────────────────────

    async def get_native_balance(self, owner: str | None = None) -> int:
        """ETH balance in wei."""
        who = Web3.to_checksum_address(owner or self.address)
        try:
            return int(await self._run(self._w3.eth.get_balance, who))
        except Exception as e:
            raise QueryError(f"ETH balance read failed for {who}: {e}") from e

    async def get_token_balance(self, token_address: str, owner: str | None = None) -> int:
        """ERC-20 balance in smallest units."""
        who = Web3.to_checksum_address(owner or self.address)
        fn = self._contract(token_address).functions.balanceOf(who).call
        try:
            return int(await self._run(fn))
        except Exception as e:
            raise QueryError(f"Token balance read failed for {token_address[:10]}: {e}") from e

    async def get_allowance(self, token_address: str, spender: str) -> int:
        fn = self._contract(token_address).functions.allowance(
            self.address, Web3.to_checksum_address(spender)
        ).call
        try:
            return int(await self._run(fn))
        except Exception as e:
            raise QueryError(f"Allowance read failed for {spender[:10]}: {e}") from e

    # ─── Writes ───────────────────────────────────────────────────────

    async def approve(self, token_address: str, spender: str, amount: int = MAX_UINT256) -> TxReceipt:
        """Approve spender. Defaults to max to avoid repeated approvals."""
        call = self._contract(token_address).functions.approve(
            Web3.to_checksum_address(spender), amount
        )
        logger.info(f"[BASE] Approving {token_address[:10]} for {spender[:10]}...")
        return await self._submit(lambda tx: call.build_transaction(tx), label="approve")

    async def burn(self, ario_address: str, amount_raw: int, destination: str) -> TxReceipt:
        call = self._contract(ario_address, "ario").functions.burn(amount_raw, destination)
        return await self._submit(lambda tx: call.build_transaction(tx), label="burn")

    async def send_transaction(
        self,
        to: str,
        data: str,
        *,
        gas_limit: int | None = None,
        value: int = 0,
    ) -> TxReceipt:
        """Send pre-encoded calldata (e.g. an aggregator route)."""

        def _build(tx: dict) -> dict:
            tx.update({"to": Web3.to_checksum_address(to), "data": data, "value": value})
            if gas_limit:
                tx["gas"] = gas_limit
            return tx

        return await self._submit(_build, label="swap")

    async def _submit(self, build: Callable[[dict], dict], *, label: str) -> TxReceipt:
        """Build, sign, send and wait for a receipt.

        Raises SubmissionError on send failure, timeout or revert.
        """
        w3 = self._w3

        def _execute() -> tuple[dict, str]:
            base_tx = {
                "from": self.address,
                "nonce": w3.eth.get_transaction_count(self.address),
                "chainId": w3.eth.chain_id,
            }
            tx = build(base_tx)
            if "gasPrice" not in tx and "maxFeePerGas" not in tx:
                tx["gasPrice"] = w3.eth.gas_price
            if "gas" not in tx:
                tx["gas"] = int(w3.eth.estimate_gas(tx) * GAS_BUFFER)
            signed = self._account.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)
            return receipt, Web3.to_hex(tx_hash)

        try:
            receipt, tx_hash = await self._run(_execute)
        except Exception as e:
            raise SubmissionError(f"{label} transaction failed: {e}") from e

        result = TxReceipt(
            tx_hash=tx_hash,
            block_number=int(receipt.get("blockNumber", 0)),
            gas_used=int(receipt.get("gasUsed", 0)),
            effective_gas_price=int(receipt.get("effectiveGasPrice", 0) or 0),
        )
        if receipt.get("status") != 1:
            logger.warning(f"[BASE] {label} reverted: {tx_hash}")
            raise SubmissionError(f"{label} transaction reverted", tx_id=tx_hash)

        logger.info(
            f"[BASE] {label} confirmed in block {result.block_number} "
            f"tx={tx_hash} gas={result.gas_used}"
        )
        return result
