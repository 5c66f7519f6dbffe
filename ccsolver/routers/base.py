"""
Price Router contract.

A router simulates a swap on one ledger and, when asked for an executable
route, returns the call data needed to perform it:

    simulate(chain, token_in, token_out, amount, side) -> SwapRoute

EXACT_IN (SELL) fixes ``amount`` as the input; EXACT_OUT (BUY) fixes it as
the output.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ccsolver.core.intent.intent import ChainId


class SwapSide(str, Enum):
    EXACT_IN = "SELL"
    EXACT_OUT = "BUY"


@dataclass(frozen=True)
class SwapRoute:
    """
    A simulated swap.

    Attributes:
        chain: Ledger the swap runs on
        token_in: Token sold
        token_out: Token bought
        side: Which leg was fixed
        amount_in: Input amount (quoted when side is EXACT_OUT)
        amount_out: Output amount (quoted when side is EXACT_IN)
        call_data: Executable payload, if requested. EVM: 0x calldata,
            Solana: base64 serialized transaction
        target: Contract to call with ``call_data`` (EVM only)
        spender: Address that must hold an allowance for ``token_in``
        value: Native value to attach (EVM only)
    """
    chain: ChainId
    token_in: str
    token_out: str
    side: SwapSide
    amount_in: int
    amount_out: int
    call_data: Optional[str] = None
    target: Optional[str] = None
    spender: Optional[str] = None
    value: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def executable(self) -> bool:
        return self.call_data is not None


class PriceRouter(ABC):
    """Swap simulation on one or more ledgers."""

    @abstractmethod
    async def simulate(
        self,
        chain: ChainId,
        token_in: str,
        token_out: str,
        amount: int,
        side: SwapSide = SwapSide.EXACT_IN,
        account: Optional[str] = None,
    ) -> SwapRoute:
        """
        Simulate a swap.

        Args:
            chain: Ledger to route on
            token_in: Token sold
            token_out: Token bought
            amount: Fixed leg amount in base units
            side: EXACT_IN or EXACT_OUT
            account: When set, build an executable route for this account

        Raises:
            SimulationFailed: if no route is available
        """

    async def close(self) -> None:
        """Release network resources."""
