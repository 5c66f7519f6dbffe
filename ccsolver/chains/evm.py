"""
EVM Chain Adapter - ERC-20 transfers, approvals, escrow release and router
swaps over plain JSON-RPC.

Transactions are EIP-1559, signed locally with eth-account. Calldata is
ABI-encoded with eth-abi. Nonces are assigned under a lock so concurrent
settlements on the same account never reuse one.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from eth_abi import encode as abi_encode
from eth_account import Account
from eth_utils import to_checksum_address

from ccsolver.chains.base import ChainAdapter, TxReceipt, TxRejected, TxStatus
from ccsolver.chains.rpc import JsonRpcClient, RpcError
from ccsolver.core.intent.intent import ChainId
from ccsolver.crypto import hex_to_bytes, keccak256
from ccsolver.routers.base import SwapRoute
from ccsolver.utils.logger import get_logger

logger = get_logger("evm")


ESCROW_SC_ETHEREUM = "0xA7C369Afd19E9866674B1704a520f42bC8958573"
NATIVE_TOKEN = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"
PRIORITY_FEE_PER_GAS = 2_000_000_000  # 2 gwei


def function_selector(signature: str) -> bytes:
    """First 4 bytes of keccak256 of the canonical function signature."""
    return keccak256(signature.encode())[:4]


BALANCE_OF = function_selector("balanceOf(address)")
DECIMALS = function_selector("decimals()")
TRANSFER = function_selector("transfer(address,uint256)")
APPROVE = function_selector("approve(address,uint256)")
SEND_FUNDS_TO_USER = function_selector("sendFundsToUser((string,string))")


def is_native(token: str) -> bool:
    return token.lower() == NATIVE_TOKEN.lower()


@dataclass
class EvmTransaction:
    """Unsigned call: target, calldata and attached value."""
    to: str
    data: bytes = b""
    value: int = 0
    gas: Optional[int] = None
    label: str = ""


class EvmChainAdapter(ChainAdapter):
    """
    Adapter for Ethereum mainnet (or any EVM ledger with the same escrow).

    Args:
        rpc_url: JSON-RPC endpoint
        private_key: Hex signing key of the solver account
        escrow_address: Escrow contract exposing sendFundsToUser
        solver_address: Payout address (defaults to the signing account)
        chain_id: EIP-155 chain id
        gas_margin: Multiplier applied to eth_estimateGas
    """

    chain = ChainId.ETHEREUM
    requires_allowance = True

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        escrow_address: str = ESCROW_SC_ETHEREUM,
        solver_address: Optional[str] = None,
        chain_id: int = 1,
        confirm_timeout: float = 120.0,
        poll_interval: float = 2.0,
        gas_margin: float = 1.2,
        rpc: Optional[JsonRpcClient] = None,
    ):
        self.account = Account.from_key(private_key)
        super().__init__(
            solver_address or self.account.address,
            confirm_timeout=confirm_timeout,
            poll_interval=poll_interval,
        )
        self.rpc = rpc or JsonRpcClient(rpc_url)
        self.escrow_address = escrow_address
        self.escrow_spender = escrow_address
        self.chain_id = chain_id
        self.gas_margin = gas_margin
        self._nonce_lock = asyncio.Lock()

    # =========================================================================
    # Reads
    # =========================================================================

    async def _eth_call(self, to: str, data: bytes) -> bytes:
        result = await self.rpc.call("eth_call", [{"to": to, "data": "0x" + data.hex()}, "latest"])
        return hex_to_bytes(result) if result else b""

    async def get_balance(self, account: str, token: str) -> int:
        if is_native(token):
            return int(await self.rpc.call("eth_getBalance", [account, "latest"]), 16)
        result = await self._eth_call(token, BALANCE_OF + abi_encode(["address"], [account.lower()]))
        return int.from_bytes(result, "big") if result else 0

    async def token_decimals(self, token: str) -> int:
        if is_native(token):
            return 18
        result = await self._eth_call(token, DECIMALS)
        if not result:
            raise RpcError("eth_call", f"{token} has no decimals()")
        return int.from_bytes(result, "big")

    async def gas_price(self) -> int:
        return int(await self.rpc.call("eth_gasPrice"), 16)

    # =========================================================================
    # Transaction building
    # =========================================================================

    async def build_transfer(self, token: str, to: str, amount: int) -> EvmTransaction:
        if is_native(token):
            return EvmTransaction(to=to, value=amount, label="transfer")
        data = TRANSFER + abi_encode(["address", "uint256"], [to.lower(), amount])
        return EvmTransaction(to=token, data=data, label="transfer")

    async def build_approve(self, token: str, spender: str, amount: int) -> EvmTransaction:
        data = APPROVE + abi_encode(["address", "uint256"], [spender.lower(), amount])
        return EvmTransaction(to=token, data=data, label="approve")

    async def build_escrow_call(self, op: str, args: Dict[str, Any]) -> EvmTransaction:
        """
        Encode an escrow call.

        ``send_funds_to_user`` takes ``intent_id`` and ``solver_out``; the
        optional ``value`` is attached to the payable call.
        """
        if op != "send_funds_to_user":
            raise ValueError(f"Unknown escrow operation: {op}")
        data = SEND_FUNDS_TO_USER + abi_encode(
            ["(string,string)"], [(args["intent_id"], args["solver_out"])]
        )
        return EvmTransaction(
            to=self.escrow_address,
            data=data,
            value=int(args.get("value", 0)),
            label="send_funds_to_user",
        )

    async def build_swap(self, route: SwapRoute) -> EvmTransaction:
        if not route.target:
            raise ValueError("EVM swap route has no target contract")
        return EvmTransaction(
            to=route.target,
            data=hex_to_bytes(route.call_data),
            value=route.value,
            label="swap",
        )

    # =========================================================================
    # Submission
    # =========================================================================

    async def submit(self, tx: EvmTransaction) -> str:
        sender = self.account.address
        call = {"from": sender, "to": tx.to, "data": "0x" + tx.data.hex(), "value": hex(tx.value)}

        async with self._nonce_lock:
            try:
                gas = tx.gas
                if gas is None:
                    estimate = int(await self.rpc.call("eth_estimateGas", [call]), 16)
                    gas = int(estimate * self.gas_margin)
                nonce = int(await self.rpc.call("eth_getTransactionCount", [sender, "pending"]), 16)
                base_fee = await self.gas_price()
            except RpcError as e:
                raise TxRejected(f"{tx.label or 'tx'} to {tx.to} rejected before broadcast: {e}") from e

            try:
                fields = {
                    "type": 2,
                    "chainId": self.chain_id,
                    "nonce": nonce,
                    "to": to_checksum_address(tx.to),
                    "value": tx.value,
                    "data": "0x" + tx.data.hex(),
                    "gas": gas,
                    "maxFeePerGas": base_fee + PRIORITY_FEE_PER_GAS,
                    "maxPriorityFeePerGas": PRIORITY_FEE_PER_GAS,
                }
                signed = self.account.sign_transaction(fields)
            except (TypeError, ValueError) as e:
                raise TxRejected(f"{tx.label or 'tx'} to {tx.to} could not be signed: {e}") from e
            raw = "0x" + bytes(signed.raw_transaction).hex()

            try:
                tx_hash = await self.rpc.call("eth_sendRawTransaction", [raw])
            except RpcError as e:
                raise TxRejected(f"{tx.label or 'tx'} to {tx.to} rejected: {e}") from e

        logger.debug(f"Sent {tx.label or 'tx'} {tx_hash} (nonce={nonce}, gas={gas})")
        return tx_hash

    async def fetch_receipt(self, tx_ref: str) -> Optional[TxReceipt]:
        receipt = await self.rpc.call("eth_getTransactionReceipt", [tx_ref])
        if not receipt:
            return None
        status = TxStatus.CONFIRMED if int(receipt.get("status", "0x0"), 16) == 1 else TxStatus.REVERTED
        block = receipt.get("blockNumber")
        return TxReceipt(
            tx_ref=tx_ref,
            status=status,
            block=int(block, 16) if block else None,
            raw=receipt,
        )

    async def close(self) -> None:
        await self.rpc.close()
