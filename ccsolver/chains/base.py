"""
Chain Adapter contract.

One adapter per ledger exposes the same settlement surface:

    get_balance(account, token)          -> int
    transfer(token, to, amount)          -> TxReceipt
    approve(token, spender, amount)      -> TxReceipt   (allowance ledgers only)
    call_escrow(op, args)                -> TxReceipt
    send_swap(route)                     -> TxReceipt
    submit_and_confirm(tx)               -> TxReceipt

Every state-changing call returns only after the transaction is confirmed,
so a caller that awaits it may rely on the on-chain effect being in place.
Terminal failures are distinguished:

- TxRejected: the node refused the transaction on submit
- TxReverted: the transaction was included but execution failed
- TxTimeout: no receipt within the confirmation bound
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from ccsolver.core.errors import SolverError
from ccsolver.core.intent.intent import ChainId
from ccsolver.routers.base import SwapRoute
from ccsolver.utils.logger import get_logger

logger = get_logger("chains")


# =============================================================================
# Receipts and errors
# =============================================================================


class TxStatus(str, Enum):
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass(frozen=True)
class TxReceipt:
    """Confirmation of a submitted transaction."""
    tx_ref: str
    status: TxStatus = TxStatus.CONFIRMED
    block: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def ok(self) -> bool:
        return self.status == TxStatus.CONFIRMED


class ChainError(SolverError):
    """Ledger interaction failed."""

    def __init__(self, message: str, tx_ref: Optional[str] = None):
        super().__init__(message)
        self.tx_ref = tx_ref


class TxRejected(ChainError):
    """Transaction refused on submit (never reached a block)."""


class TxReverted(ChainError):
    """Transaction included but its execution failed."""


class TxTimeout(ChainError):
    """No confirmation within the polling bound. Not a success."""


# =============================================================================
# Confirmation polling
# =============================================================================


async def poll_until_confirmed(
    fetch_receipt: Callable[[], Awaitable[Optional[TxReceipt]]],
    tx_ref: str,
    timeout: float = 120.0,
    interval: float = 1.0,
    max_interval: float = 10.0,
    backoff: float = 1.5,
) -> TxReceipt:
    """
    Poll for a receipt with exponential backoff and a bounded total wait.

    Transient errors from ``fetch_receipt`` are logged and polling continues.

    Args:
        fetch_receipt: Returns the receipt, or None while still pending
        tx_ref: Transaction reference, for errors and logs
        timeout: Maximum elapsed seconds
        interval: Initial delay between polls
        max_interval: Cap on the delay
        backoff: Delay multiplier per attempt

    Returns:
        Confirmed receipt

    Raises:
        TxReverted: if the receipt reports failed execution
        TxTimeout: if no receipt arrived within ``timeout``
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    delay = interval
    attempts = 0

    while True:
        attempts += 1
        try:
            receipt = await fetch_receipt()
        except ChainError:
            raise
        except Exception as e:
            logger.debug(f"Receipt poll for {tx_ref} failed (attempt {attempts}): {e}")
            receipt = None

        if receipt is not None:
            if receipt.status == TxStatus.REVERTED:
                raise TxReverted(f"Transaction {tx_ref} reverted", tx_ref=tx_ref)
            return receipt

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise TxTimeout(
                f"Transaction {tx_ref} not confirmed after {timeout:.0f}s ({attempts} polls)",
                tx_ref=tx_ref,
            )
        await asyncio.sleep(min(delay, remaining))
        delay = min(delay * backoff, max_interval)


# =============================================================================
# Adapter
# =============================================================================


class ChainAdapter(ABC):
    """
    Uniform settlement surface over one ledger.

    Subclasses build ledger-specific transaction objects and implement
    ``submit`` / ``fetch_receipt``; the confirmed operations are shared.

    Attributes:
        chain: Ledger served by this adapter
        requires_allowance: Token model needs approve() before a third party
            can move the solver's tokens
        solver_address: Solver payout account on this ledger
    """

    chain: ChainId
    requires_allowance: bool = False
    # Account the escrow pulls solver funds from via allowance, if any
    escrow_spender: Optional[str] = None

    def __init__(
        self,
        solver_address: str,
        confirm_timeout: float = 120.0,
        poll_interval: float = 1.0,
    ):
        self.solver_address = solver_address
        self.confirm_timeout = confirm_timeout
        self.poll_interval = poll_interval

    # -- reads ---------------------------------------------------------------

    @abstractmethod
    async def get_balance(self, account: str, token: str) -> int:
        """Token balance of ``account`` in base units."""

    # -- transaction building ------------------------------------------------

    @abstractmethod
    async def build_transfer(self, token: str, to: str, amount: int) -> Any:
        ...

    async def build_approve(self, token: str, spender: str, amount: int) -> Any:
        raise NotImplementedError(f"{self.chain.value} has no token allowances")

    @abstractmethod
    async def build_escrow_call(self, op: str, args: Dict[str, Any]) -> Any:
        ...

    @abstractmethod
    async def build_swap(self, route: SwapRoute) -> Any:
        ...

    # -- submission ----------------------------------------------------------

    @abstractmethod
    async def submit(self, tx: Any) -> str:
        """
        Sign and broadcast.

        Raises:
            TxRejected: if the node refuses the transaction
        """

    @abstractmethod
    async def fetch_receipt(self, tx_ref: str) -> Optional[TxReceipt]:
        """Receipt if the transaction is final, None while pending."""

    async def submit_and_confirm(self, tx: Any) -> TxReceipt:
        tx_ref = await self.submit(tx)
        logger.debug(f"[{self.chain.value}] submitted {tx_ref}")
        receipt = await poll_until_confirmed(
            lambda: self.fetch_receipt(tx_ref),
            tx_ref,
            timeout=self.confirm_timeout,
            interval=self.poll_interval,
        )
        logger.info(f"[{self.chain.value}] confirmed {tx_ref} (block {receipt.block})")
        return receipt

    # -- confirmed operations ------------------------------------------------

    async def transfer(self, token: str, to: str, amount: int) -> TxReceipt:
        return await self.submit_and_confirm(await self.build_transfer(token, to, amount))

    async def approve(self, token: str, spender: str, amount: int) -> TxReceipt:
        return await self.submit_and_confirm(await self.build_approve(token, spender, amount))

    async def call_escrow(self, op: str, args: Dict[str, Any]) -> TxReceipt:
        return await self.submit_and_confirm(await self.build_escrow_call(op, args))

    async def send_swap(self, route: SwapRoute) -> TxReceipt:
        if not route.executable:
            raise ValueError("Route carries no call data; simulate with an account first")
        return await self.submit_and_confirm(await self.build_swap(route))

    async def close(self) -> None:
        """Release network resources."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(chain={self.chain.value}, solver={self.solver_address})"
