"""
Quoting Engine - turns an intent into the amount the solver can offer.

    token_in --(src router, exact in)--> bridging token
             - flat cost - commission
    bridging token --(dst router, exact in)--> token_out

All amounts are integers in on-chain base units. An unprofitable intent
quotes 0; that is the normal "do not bid" answer, not an error.
"""

from dataclasses import dataclass

from ccsolver.core.errors import SimulationFailed, SolverError
from ccsolver.core.intent.intent import ChainId, Intent
from ccsolver.core.quoting.fees import FeeSchedule
from ccsolver.core.quoting.tokens import TokenRegistry, same_token
from ccsolver.routers.base import PriceRouter, SwapSide
from ccsolver.utils.logger import get_logger

logger = get_logger("quoting")


NO_OFFER = 0


@dataclass(frozen=True)
class Quote:
    """
    Breakdown of one quote.

    Attributes:
        bridged: token_in converted to the bridging token on src_chain
        flat_cost: Flat cost for the chain pair
        commission: Proportional commission on ``bridged``
        remainder: Bridging-token amount left for the user
        offer: Final amount of token_out (0 = no offer)
    """
    intent_id: str
    bridged: int
    flat_cost: int
    commission: int
    remainder: int
    offer: int

    @property
    def profitable(self) -> bool:
        return self.offer > NO_OFFER


class QuotingEngine:
    """
    Computes the offer for an intent.

    Args:
        router: Price router covering every enabled ledger
        fees: Flat cost and commission table
        tokens: Token registry used to resolve the bridging token
        bridge_symbol: Symbol of the bridging token
        min_dust: Remainders below this are not worth bidding on
    """

    def __init__(
        self,
        router: PriceRouter,
        fees: FeeSchedule,
        tokens: TokenRegistry,
        bridge_symbol: str = "USDT",
        min_dust: int = 0,
    ):
        self.router = router
        self.fees = fees
        self.tokens = tokens
        self.bridge_symbol = bridge_symbol
        self.min_dust = min_dust

    def bridge_token(self, chain: ChainId) -> str:
        """
        Raises:
            UnknownToken: if the bridging token is not deployed on ``chain``
        """
        address, _ = self.tokens.resolve(self.bridge_symbol, chain)
        return address

    async def quote(self, intent: Intent) -> int:
        """Offer for ``intent`` in token_out base units, 0 when unprofitable."""
        return (await self.quote_detailed(intent)).offer

    async def quote_detailed(self, intent: Intent) -> Quote:
        """
        Full quote breakdown.

        Raises:
            UnsupportedOperationError: for non-SwapTransfer intents
            UnknownToken: if the bridging token is not registered
            SimulationFailed: if a router leg fails
        """
        inputs, outputs = intent.swap_transfer()
        src, dst = intent.src_chain, intent.dst_chain
        bridge_src = self.bridge_token(src)
        bridge_dst = self.bridge_token(dst)

        # Leg 1: token_in -> bridging token on the source ledger
        if same_token(src, inputs.token_in, bridge_src):
            bridged = inputs.amount_in
        else:
            bridged = await self._simulate(
                intent, src, inputs.token_in, bridge_src, inputs.amount_in
            )

        fee = self.fees.quote(src, dst)
        commission = fee.commission_on(bridged)
        remainder = bridged - fee.flat_cost - commission

        if remainder <= 0 or remainder < self.min_dust:
            logger.info(
                f"Intent {intent.intent_id}: unprofitable "
                f"(bridged={bridged}, flat={fee.flat_cost}, commission={commission})"
            )
            return Quote(intent.intent_id, bridged, fee.flat_cost, commission, remainder, NO_OFFER)

        # Leg 2: bridging token -> token_out on the destination ledger
        if same_token(dst, outputs.token_out, bridge_dst):
            offer = remainder
        else:
            offer = await self._simulate(intent, dst, bridge_dst, outputs.token_out, remainder)

        logger.debug(
            f"Intent {intent.intent_id}: bridged={bridged} flat={fee.flat_cost} "
            f"commission={commission} offer={offer}"
        )
        return Quote(intent.intent_id, bridged, fee.flat_cost, commission, remainder, max(offer, NO_OFFER))

    async def _simulate(
        self,
        intent: Intent,
        chain: ChainId,
        token_in: str,
        token_out: str,
        amount: int,
    ) -> int:
        try:
            route = await self.router.simulate(chain, token_in, token_out, amount, SwapSide.EXACT_IN)
        except SolverError:
            raise
        except Exception as e:
            raise SimulationFailed(
                f"Intent {intent.intent_id}: {chain.value} route {token_in}->{token_out} failed: {e}"
            ) from e
        return route.amount_out
