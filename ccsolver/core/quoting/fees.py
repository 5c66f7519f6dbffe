"""
Fee Schedule - flat costs and commission the solver recovers per intent.

Flat costs are expressed in base units of the bridging token, split into the
cost paid on the source ledger and the cost paid on the destination ledger:

    (src_chain, dst_chain) -> (src_cost, dst_cost)

The commission is proportional and expressed per COMMISSION_DENOMINATOR
(100 = 0.1%).

The table is read-mostly. FeeUpdater recomputes it periodically from gas
prices and USD asset prices and swaps the whole mapping in one assignment,
so a reader never observes a half-updated table.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Optional, Tuple

import aiohttp

from ccsolver.core.intent.intent import ChainId
from ccsolver.utils.logger import get_logger

logger = get_logger("fees")


COMMISSION_DENOMINATOR = 100_000

# Bridging-token base units (6 decimals): 30_000_000 == 30 USD
DEFAULT_FLAT_FEES: Dict[Tuple[ChainId, ChainId], Tuple[int, int]] = {
    (ChainId.ETHEREUM, ChainId.ETHEREUM): (0, 30_000_000),
    (ChainId.SOLANA, ChainId.SOLANA): (1_000_000, 1_000_000),
    (ChainId.ETHEREUM, ChainId.SOLANA): (0, 10_000_000),
    (ChainId.SOLANA, ChainId.ETHEREUM): (40_000_000, 1_000_000),
}

# Gas used by the escrow entry points on EVM ledgers
STORE_INTENT_GAS = 250_000
SEND_FUNDS_TO_USER_GAS = 170_000
ON_RECEIVE_TRANSFER_GAS = 150_000
PRIORITY_FEE_PER_GAS = 2_000_000_000  # 2 gwei
WEI_PER_ETH = 10**18

# Solana instructions cost well under a cent; USD value per escrow call
SOLANA_CALL_COST_USD = 0.008
# Cross-domain relay message, in SOL
RELAYER_FEE_SOL = 0.5


@dataclass(frozen=True)
class FeeQuote:
    """Costs for one (src, dst) pair."""
    src_cost: int
    dst_cost: int
    commission: int

    @property
    def flat_cost(self) -> int:
        return self.src_cost + self.dst_cost

    def commission_on(self, amount: int) -> int:
        return amount * self.commission // COMMISSION_DENOMINATOR


class FeeSchedule:
    """
    Per-pair flat costs plus a proportional commission.

    Args:
        commission: Commission per COMMISSION_DENOMINATOR
        flat_fees: Initial (src, dst) -> (src_cost, dst_cost) table
    """

    def __init__(
        self,
        commission: int,
        flat_fees: Optional[Mapping[Tuple[ChainId, ChainId], Tuple[int, int]]] = None,
    ):
        if commission < 0:
            raise ValueError("commission must be non-negative")
        self.commission = commission
        self._table: Dict[Tuple[ChainId, ChainId], Tuple[int, int]] = dict(
            flat_fees if flat_fees is not None else DEFAULT_FLAT_FEES
        )
        self.updated_at: Optional[float] = None

    def quote(self, src_chain: ChainId, dst_chain: ChainId) -> FeeQuote:
        """
        Costs for a pair. An unknown pair costs nothing beyond commission.
        """
        costs = self._table.get((src_chain, dst_chain))
        if costs is None:
            logger.warning(f"No flat fee for {src_chain.value}->{dst_chain.value}, using 0")
            costs = (0, 0)
        return FeeQuote(src_cost=costs[0], dst_cost=costs[1], commission=self.commission)

    def flat_cost(self, src_chain: ChainId, dst_chain: ChainId) -> int:
        return self.quote(src_chain, dst_chain).flat_cost

    def commission_on(self, amount: int) -> int:
        """Proportional commission on a bridging-token amount."""
        return amount * self.commission // COMMISSION_DENOMINATOR

    def replace_table(self, table: Mapping[Tuple[ChainId, ChainId], Tuple[int, int]]) -> None:
        """Swap in a freshly computed table."""
        self._table = dict(table)
        self.updated_at = time.time()

    def table(self) -> Dict[Tuple[ChainId, ChainId], Tuple[int, int]]:
        return dict(self._table)

    def to_dict(self) -> dict:
        return {
            "commission": self.commission,
            "denominator": COMMISSION_DENOMINATOR,
            "flat_fees": {
                f"{src.value}->{dst.value}": {"src_cost": costs[0], "dst_cost": costs[1]}
                for (src, dst), costs in sorted(self._table.items())
            },
        }


def parse_flat_fees(raw: Mapping[str, object]) -> Dict[Tuple[ChainId, ChainId], Tuple[int, int]]:
    """
    Parse a flat fee override such as ``{"ethereum->solana": [0, 10000000]}``.

    Raises:
        ValueError: on an unknown chain or malformed entry
    """
    table: Dict[Tuple[ChainId, ChainId], Tuple[int, int]] = {}
    for pair, costs in raw.items():
        src, sep, dst = pair.partition("->")
        if not sep:
            raise ValueError(f"Flat fee key must look like 'src->dst', got {pair!r}")
        if not isinstance(costs, (list, tuple)) or len(costs) != 2:
            raise ValueError(f"Flat fee for {pair} must be [src_cost, dst_cost]")
        src_cost, dst_cost = int(costs[0]), int(costs[1])
        if src_cost < 0 or dst_cost < 0:
            raise ValueError(f"Flat fee for {pair} must be non-negative")
        table[(ChainId(src.strip().lower()), ChainId(dst.strip().lower()))] = (src_cost, dst_cost)
    return table


# =============================================================================
# Fee Updater
# =============================================================================


class CoinGeckoPriceFeed:
    """USD spot prices from the public CoinGecko API."""

    URL = "https://api.coingecko.com/api/v3/simple/price"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None, timeout: float = 10.0):
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def usd_price(self, asset_id: str) -> float:
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession(timeout=self._timeout)
        try:
            params = {"ids": asset_id, "vs_currencies": "usd"}
            async with session.get(self.URL, params=params) as response:
                body = await response.json(content_type=None)
                if response.status >= 400:
                    raise RuntimeError(f"CoinGecko request failed: status={response.status} body={body}")
        finally:
            if owns_session:
                await session.close()

        try:
            return float(body[asset_id]["usd"])
        except (KeyError, TypeError, ValueError) as e:
            raise RuntimeError(f"Unexpected CoinGecko response for {asset_id}: {body}") from e


def _usd_to_units(usd: float, decimals: int) -> int:
    return int(round(usd * 10**decimals))


def compute_flat_fees(
    gas_price_wei: int,
    eth_usd: float,
    sol_usd: float,
    decimals: int = 6,
) -> Dict[Tuple[ChainId, ChainId], Tuple[int, int]]:
    """
    Flat fee table from live market data.

    Args:
        gas_price_wei: Current EVM base gas price
        eth_usd: ETH price in USD
        sol_usd: SOL price in USD
        decimals: Bridging token decimals

    Returns:
        (src, dst) -> (src_cost, dst_cost) in bridging-token base units
    """
    max_fee_per_gas = gas_price_wei + PRIORITY_FEE_PER_GAS
    eth_price_units = _usd_to_units(eth_usd, decimals)

    def eth_cost(gas: int) -> int:
        return gas * max_fee_per_gas * eth_price_units // WEI_PER_ETH

    store_intent = eth_cost(STORE_INTENT_GAS)
    send_funds = eth_cost(SEND_FUNDS_TO_USER_GAS)
    on_receive = eth_cost(ON_RECEIVE_TRANSFER_GAS)
    sol_call = _usd_to_units(SOLANA_CALL_COST_USD, decimals)
    relayer = _usd_to_units(RELAYER_FEE_SOL * sol_usd, decimals)

    return {
        (ChainId.ETHEREUM, ChainId.ETHEREUM): (0, store_intent + send_funds),
        (ChainId.SOLANA, ChainId.SOLANA): (0, 2 * sol_call),
        (ChainId.ETHEREUM, ChainId.SOLANA): (on_receive, 2 * sol_call),
        (ChainId.SOLANA, ChainId.ETHEREUM): (sol_call + relayer, store_intent + send_funds),
    }


class FeeUpdater:
    """
    Background task that refreshes a FeeSchedule.

    A failed refresh is logged and the previous table stays in force.
    """

    def __init__(
        self,
        schedule: FeeSchedule,
        gas_price: Callable[[], Awaitable[int]],
        price_feed: CoinGeckoPriceFeed,
        interval: float = 300.0,
        decimals: int = 6,
    ):
        self.schedule = schedule
        self._gas_price = gas_price
        self._price_feed = price_feed
        self.interval = interval
        self.decimals = decimals
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> bool:
        """Recompute the table once. Returns True on success."""
        try:
            gas_price = await self._gas_price()
            eth_usd = await self._price_feed.usd_price("ethereum")
            sol_usd = await self._price_feed.usd_price("solana")
        except Exception as e:
            logger.warning(f"Fee update failed, keeping previous table: {e}")
            return False

        table = compute_flat_fees(gas_price, eth_usd, sol_usd, self.decimals)
        self.schedule.replace_table(table)
        logger.info(f"Flat fees updated (gas={gas_price} wei, eth=${eth_usd}, sol=${sol_usd})")
        logger.debug(f"Flat fee table: {self.schedule.to_dict()['flat_fees']}")
        return True

    async def _loop(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
