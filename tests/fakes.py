"""
In-memory stand-ins for the feed channel, price router and ledger adapters.

Every fake appends to an optional shared ``journal`` so tests can assert the
order of operations across components.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Tuple

from ccsolver.chains.base import ChainAdapter, TxReceipt, TxRejected
from ccsolver.core.errors import SimulationFailed
from ccsolver.core.intent.intent import ChainId
from ccsolver.network.channel import ChannelError, ChannelState, MessageChannel
from ccsolver.routers.base import PriceRouter, SwapRoute, SwapSide


ETH_USDT = "0xdAC17F958D2ee523a2206206994597C13D831ec7"
ETH_USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
ETH_WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
SOL_USDT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
SOL_WSOL = "So11111111111111111111111111111111111111112"

# Any valid secp256k1 key works for signing in tests
TEST_SIGNING_KEY = "4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"


class FakeChannel(MessageChannel):
    """Channel fed by the test; ``sent`` holds decoded outbound envelopes."""

    def __init__(self, fail_open: bool = False):
        self.fail_open = fail_open
        self.sent: List[Dict[str, Any]] = []
        self.inbound: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self.state = ChannelState.CLOSED

    async def open(self) -> None:
        if self.fail_open:
            raise ChannelError("Connection refused")
        self.state = ChannelState.OPEN

    async def send(self, text: str) -> None:
        if self.state != ChannelState.OPEN:
            raise ChannelError("Channel is not open")
        self.sent.append(json.loads(text))

    async def receive(self) -> Optional[str]:
        if self.state != ChannelState.OPEN:
            return None
        raw = await self.inbound.get()
        if raw is None:
            self.state = ChannelState.CLOSED
        return raw

    async def close(self) -> None:
        self.state = ChannelState.CLOSED

    def feed(self, envelope: Any) -> None:
        self.inbound.put_nowait(envelope if isinstance(envelope, str) else json.dumps(envelope))

    def close_remote(self) -> None:
        self.inbound.put_nowait(None)

    def sent_with_code(self, code: int) -> List[Dict[str, Any]]:
        return [envelope for envelope in self.sent if envelope["code"] == code]


class FakeRouter(PriceRouter):
    """
    Deterministic router.

    ``rates`` maps (token_in, token_out) to a (numerator, denominator)
    price; unlisted pairs trade 1:1. Pairs in ``failing`` raise
    SimulationFailed.
    """

    def __init__(
        self,
        rates: Optional[Dict[Tuple[str, str], Tuple[int, int]]] = None,
        failing: Optional[set] = None,
        journal: Optional[List[str]] = None,
    ):
        self.rates = dict(rates or {})
        self.failing = set(failing or ())
        self.journal = journal if journal is not None else []
        self.calls: List[Tuple[ChainId, str, str, int, SwapSide]] = []

    async def simulate(
        self,
        chain: ChainId,
        token_in: str,
        token_out: str,
        amount: int,
        side: SwapSide = SwapSide.EXACT_IN,
        account: Optional[str] = None,
    ) -> SwapRoute:
        self.calls.append((chain, token_in, token_out, amount, side))
        self.journal.append(f"simulate:{side.value}")
        if (token_in, token_out) in self.failing:
            raise SimulationFailed(f"No route {token_in}->{token_out}")

        num, den = self.rates.get((token_in, token_out), (1, 1))
        if side == SwapSide.EXACT_IN:
            amount_in, amount_out = amount, amount * num // den
        else:
            amount_in, amount_out = -(-amount * den // num), amount

        executable = account is not None
        return SwapRoute(
            chain=chain,
            token_in=token_in,
            token_out=token_out,
            side=side,
            amount_in=amount_in,
            amount_out=amount_out,
            call_data="0xfeed" if executable else None,
            target="0x00000000000000000000000000000000000000aa" if executable else None,
            spender="0x00000000000000000000000000000000000000bb" if executable and chain == ChainId.ETHEREUM else None,
        )


class FakeAdapter(ChainAdapter):
    """
    Ledger that confirms every transaction immediately.

    Args:
        chain: Ledger identity
        solver_address: Payout account
        requires_allowance: Emulate an allowance-based token model
        fail: Operation kind -> exception raised on submit
            (kinds: transfer, approve, escrow, swap)
        balances: Successive get_balance results; the last one repeats
        escrow_spender: Spender approved before escrow release
    """

    def __init__(
        self,
        chain: ChainId,
        solver_address: str = "solver",
        requires_allowance: bool = False,
        fail: Optional[Dict[str, Exception]] = None,
        balances: Optional[List[int]] = None,
        escrow_spender: Optional[str] = None,
        journal: Optional[List[str]] = None,
    ):
        super().__init__(solver_address, confirm_timeout=1.0, poll_interval=0.01)
        self.chain = chain
        self.requires_allowance = requires_allowance
        self.escrow_spender = escrow_spender
        self.fail = dict(fail or {})
        self.balances = list(balances or [0])
        self.journal = journal if journal is not None else []
        self.submitted: List[Dict[str, Any]] = []
        self.balance_error: Optional[Exception] = None
        self._counter = 0

    async def get_balance(self, account: str, token: str) -> int:
        if self.balance_error is not None:
            raise self.balance_error
        if len(self.balances) > 1:
            return self.balances.pop(0)
        return self.balances[0]

    async def build_transfer(self, token: str, to: str, amount: int) -> Any:
        return {"kind": "transfer", "token": token, "to": to, "amount": amount}

    async def build_approve(self, token: str, spender: str, amount: int) -> Any:
        if not self.requires_allowance:
            return await super().build_approve(token, spender, amount)
        return {"kind": "approve", "token": token, "spender": spender, "amount": amount}

    async def build_escrow_call(self, op: str, args: Dict[str, Any]) -> Any:
        return {"kind": "escrow", "op": op, "args": dict(args)}

    async def build_swap(self, route: SwapRoute) -> Any:
        return {"kind": "swap", "route": route}

    async def submit(self, tx: Any) -> str:
        kind = tx["kind"]
        self.journal.append(f"{self.chain.value}:{kind}:submit")
        error = self.fail.get(kind)
        if error is not None:
            raise error
        self._counter += 1
        self.submitted.append(tx)
        return f"{self.chain.value}-tx-{self._counter}"

    async def fetch_receipt(self, tx_ref: str) -> Optional[TxReceipt]:
        self.journal.append(f"{self.chain.value}:confirmed")
        return TxReceipt(tx_ref=tx_ref, block=self._counter)

    def kinds(self) -> List[str]:
        return [tx["kind"] for tx in self.submitted]


def rejected(message: str = "execution reverted") -> TxRejected:
    return TxRejected(message)


def intent_payload(
    function_name: str = "transfer",
    src_chain: str = "ethereum",
    dst_chain: str = "ethereum",
    token_in: str = ETH_USDT,
    amount_in: int = 500_000_000,
    token_out: str = ETH_USDT,
    amount_out: int = 490_000_000,
    user: str = "0x1111111111111111111111111111111111111111",
) -> Dict[str, Any]:
    """Intent in the feed's wire shape."""
    return {
        "function_name": function_name,
        "src_chain": src_chain,
        "dst_chain": dst_chain,
        "inputs": {
            "SwapTransfer": {
                "token_in": token_in,
                "amount_in": str(amount_in),
                "src_chain_user": user,
                "timeout": "1000000",
            }
        },
        "outputs": {
            "SwapTransfer": {
                "token_out": token_out,
                "amount_out": str(amount_out),
                "dst_chain_user": user,
            }
        },
    }


def new_intent_message(intent_id: str, as_string: bool = True, **fields: Any) -> Dict[str, Any]:
    payload = intent_payload(**fields)
    return {
        "code": 1,
        "msg": {"intent_id": intent_id, "intent": json.dumps(payload) if as_string else payload},
    }


def auction_result_message(intent_id: str, amount: int, text: str = "Congratulations, you won!") -> Dict[str, Any]:
    return {"code": 4, "msg": {"intent_id": intent_id, "amount": str(amount), "msg": text}}
