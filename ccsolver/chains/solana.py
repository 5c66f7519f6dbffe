"""
Solana Chain Adapter - SPL transfers, escrow release and Jupiter swaps.

Transactions are v0 messages built and signed with solders and broadcast
over JSON-RPC. SPL tokens need no allowance; token accounts are the
associated token accounts of the owner.

The escrow is an Anchor program: instruction data is the 8-byte
discriminator ``sha256("global:<name>")[:8]`` followed by Borsh-encoded
arguments.
"""

import base64
import hashlib
import json
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import VersionedTransaction

from ccsolver.chains.base import ChainAdapter, ChainError, TxReceipt, TxRejected, TxStatus
from ccsolver.chains.rpc import JsonRpcClient, RpcError
from ccsolver.core.intent.intent import ChainId
from ccsolver.routers.base import SwapRoute
from ccsolver.utils.logger import get_logger

logger = get_logger("solana")


TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbd2ZVh6uzK9Eqx2fcbXrw4oNzsPUVcqqQRZ")
WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"
AUCTIONEER_SOLANA = "CwmS7F8wL2Q54Kggd217Jj7BnbxaQFo7rmpFGi6QibDW"

# Accounts the escrow declares optional; Anchor expects the program id in their place
ESCROW_OPTIONAL_ACCOUNTS = 10

SPL_TRANSFER = 3
ATA_CREATE_IDEMPOTENT = 1
CONFIRMED_LEVELS = ("confirmed", "finalized")


# =============================================================================
# Encoding helpers
# =============================================================================


def load_keypair(raw: str) -> Keypair:
    """Keypair from a base58 secret or a JSON byte array."""
    value = raw.strip()
    if value.startswith("["):
        data = json.loads(value)
        if not isinstance(data, list):
            raise ValueError("Solana keypair JSON must be an integer array")
        return Keypair.from_bytes(bytes(data))
    return Keypair.from_base58_string(value)


def associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


def borsh_string(value: str) -> bytes:
    encoded = value.encode()
    return struct.pack("<I", len(encoded)) + encoded


def borsh_option_string(value: Optional[str]) -> bytes:
    if value is None:
        return b"\x00"
    return b"\x01" + borsh_string(value)


def encode_send_funds_to_user(
    intent_id: str,
    hashed_full_denom: Optional[str] = None,
    solver_out: Optional[str] = None,
) -> bytes:
    return (
        anchor_discriminator("send_funds_to_user")
        + borsh_string(intent_id)
        + borsh_option_string(hashed_full_denom)
        + borsh_option_string(solver_out)
    )


@dataclass
class SolanaTransaction:
    """Either instructions to compile or an already built transaction."""
    instructions: List[Instruction] = field(default_factory=list)
    prebuilt: Optional[VersionedTransaction] = None
    label: str = ""


# =============================================================================
# Adapter
# =============================================================================


class SolanaChainAdapter(ChainAdapter):
    """
    Adapter for Solana mainnet.

    Args:
        rpc_url: JSON-RPC endpoint
        keypair: Solver keypair (base58 secret or JSON byte array)
        escrow_program: Escrow program id
        auctioneer: Auctioneer account referenced by the escrow
        solver_address: Payout address (defaults to the keypair pubkey)
        skip_preflight: Send without simulation
    """

    chain = ChainId.SOLANA
    requires_allowance = False

    def __init__(
        self,
        rpc_url: str,
        keypair: str,
        escrow_program: str,
        auctioneer: str = AUCTIONEER_SOLANA,
        solver_address: Optional[str] = None,
        confirm_timeout: float = 60.0,
        poll_interval: float = 1.0,
        skip_preflight: bool = True,
        rpc: Optional[JsonRpcClient] = None,
    ):
        self.keypair = load_keypair(keypair)
        super().__init__(
            solver_address or str(self.keypair.pubkey()),
            confirm_timeout=confirm_timeout,
            poll_interval=poll_interval,
        )
        self.rpc = rpc or JsonRpcClient(rpc_url)
        self.escrow_program = Pubkey.from_string(escrow_program)
        self.auctioneer = Pubkey.from_string(auctioneer)
        self.skip_preflight = skip_preflight

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_balance(self, account: str, token: str) -> int:
        owner = Pubkey.from_string(account)
        if token == WRAPPED_SOL_MINT:
            result = await self.rpc.call("getBalance", [str(owner), {"commitment": "confirmed"}])
            return int(result["value"])

        ata = associated_token_address(owner, Pubkey.from_string(token))
        try:
            result = await self.rpc.call("getTokenAccountBalance", [str(ata), {"commitment": "confirmed"}])
        except RpcError as e:
            # Account not created yet
            if e.code == -32602:
                return 0
            raise
        return int(result["value"]["amount"])

    async def latest_blockhash(self) -> Hash:
        result = await self.rpc.call("getLatestBlockhash", [{"commitment": "confirmed"}])
        try:
            return Hash.from_string(result["value"]["blockhash"])
        except (KeyError, TypeError) as e:
            raise ChainError(f"Unexpected getLatestBlockhash response: {result}") from e

    # =========================================================================
    # Transaction building
    # =========================================================================

    def _create_ata_idempotent(self, owner: Pubkey, mint: Pubkey) -> Instruction:
        return Instruction(
            ASSOCIATED_TOKEN_PROGRAM_ID,
            bytes([ATA_CREATE_IDEMPOTENT]),
            [
                AccountMeta(self.pubkey, is_signer=True, is_writable=True),
                AccountMeta(associated_token_address(owner, mint), is_signer=False, is_writable=True),
                AccountMeta(owner, is_signer=False, is_writable=False),
                AccountMeta(mint, is_signer=False, is_writable=False),
                AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
                AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
            ],
        )

    async def build_transfer(self, token: str, to: str, amount: int) -> SolanaTransaction:
        mint = Pubkey.from_string(token)
        recipient = Pubkey.from_string(to)
        transfer = Instruction(
            TOKEN_PROGRAM_ID,
            bytes([SPL_TRANSFER]) + struct.pack("<Q", amount),
            [
                AccountMeta(associated_token_address(self.pubkey, mint), is_signer=False, is_writable=True),
                AccountMeta(associated_token_address(recipient, mint), is_signer=False, is_writable=True),
                AccountMeta(self.pubkey, is_signer=True, is_writable=False),
            ],
        )
        return SolanaTransaction(
            instructions=[self._create_ata_idempotent(recipient, mint), transfer],
            label="transfer",
        )

    async def build_escrow_call(self, op: str, args: Dict[str, Any]) -> SolanaTransaction:
        """
        Encode ``send_funds_to_user``.

        Only same-ledger intents are released here; a cross-ledger release
        goes through a relayer this adapter does not drive.
        """
        if op != "send_funds_to_user":
            raise ValueError(f"Unknown escrow operation: {op}")
        if not args.get("single_domain", False):
            raise ChainError("Cross-domain escrow release is not supported on solana")

        intent_id = args["intent_id"]
        token_in = Pubkey.from_string(args["token_in"])
        token_out = Pubkey.from_string(args["token_out"])
        user = Pubkey.from_string(args["user"])

        intent_state, _ = Pubkey.find_program_address([b"intent", intent_id.encode()], self.escrow_program)
        auctioneer_state, _ = Pubkey.find_program_address([b"auctioneer"], self.escrow_program)

        def meta(key: Pubkey, writable: bool = True, signer: bool = False) -> AccountMeta:
            return AccountMeta(key, is_signer=signer, is_writable=writable)

        accounts = [
            meta(self.pubkey, signer=True),
            meta(intent_state),
            meta(auctioneer_state),
            meta(self.auctioneer),
            meta(token_in, writable=False),
            meta(token_out, writable=False),
            meta(associated_token_address(auctioneer_state, token_in)),
            meta(associated_token_address(self.pubkey, token_in)),
            meta(associated_token_address(self.pubkey, token_out)),
            meta(associated_token_address(user, token_out)),
            meta(TOKEN_PROGRAM_ID, writable=False),
            meta(ASSOCIATED_TOKEN_PROGRAM_ID, writable=False),
            meta(SYSTEM_PROGRAM_ID, writable=False),
        ]
        accounts.extend(meta(self.escrow_program, writable=False) for _ in range(ESCROW_OPTIONAL_ACCOUNTS))

        instruction = Instruction(self.escrow_program, encode_send_funds_to_user(intent_id), accounts)
        return SolanaTransaction(instructions=[instruction], label="send_funds_to_user")

    async def build_swap(self, route: SwapRoute) -> SolanaTransaction:
        unsigned = VersionedTransaction.from_bytes(base64.b64decode(route.call_data))
        return SolanaTransaction(prebuilt=unsigned, label="swap")

    # =========================================================================
    # Submission
    # =========================================================================

    async def _sign(self, tx: SolanaTransaction) -> VersionedTransaction:
        if tx.prebuilt is not None:
            return VersionedTransaction(tx.prebuilt.message, [self.keypair])
        blockhash = await self.latest_blockhash()
        message = MessageV0.try_compile(self.pubkey, tx.instructions, [], blockhash)
        return VersionedTransaction(message, [self.keypair])

    async def submit(self, tx: SolanaTransaction) -> str:
        try:
            signed = await self._sign(tx)
            encoded = base64.b64encode(bytes(signed)).decode()
            signature = await self.rpc.call(
                "sendTransaction",
                [
                    encoded,
                    {
                        "encoding": "base64",
                        "skipPreflight": self.skip_preflight,
                        "preflightCommitment": "confirmed",
                    },
                ],
            )
        except RpcError as e:
            raise TxRejected(f"{tx.label or 'tx'} rejected: {e}") from e

        logger.debug(f"Sent {tx.label or 'tx'} {signature}")
        return signature

    async def fetch_receipt(self, tx_ref: str) -> Optional[TxReceipt]:
        result = await self.rpc.call(
            "getSignatureStatuses", [[tx_ref], {"searchTransactionHistory": True}]
        )
        statuses = (result or {}).get("value") or [None]
        status = statuses[0]
        if not status:
            return None
        if status.get("err") is not None:
            return TxReceipt(tx_ref=tx_ref, status=TxStatus.REVERTED, block=status.get("slot"), raw=status)
        if status.get("confirmationStatus") not in CONFIRMED_LEVELS:
            return None
        return TxReceipt(tx_ref=tx_ref, status=TxStatus.CONFIRMED, block=status.get("slot"), raw=status)

    async def close(self) -> None:
        await self.rpc.close()
