"""
Chain Router - dispatches simulations to the router serving each ledger.
"""

from typing import Dict, Optional

from ccsolver.core.errors import SimulationFailed, SolverError
from ccsolver.core.intent.intent import ChainId
from ccsolver.routers.base import PriceRouter, SwapRoute, SwapSide


class ChainRouter(PriceRouter):
    """One PriceRouter per ChainId."""

    def __init__(self, routers: Optional[Dict[ChainId, PriceRouter]] = None):
        self.routers: Dict[ChainId, PriceRouter] = dict(routers or {})

    def register(self, chain: ChainId, router: PriceRouter) -> None:
        self.routers[chain] = router

    async def simulate(
        self,
        chain: ChainId,
        token_in: str,
        token_out: str,
        amount: int,
        side: SwapSide = SwapSide.EXACT_IN,
        account: Optional[str] = None,
    ) -> SwapRoute:
        router = self.routers.get(chain)
        if router is None:
            raise SimulationFailed(f"No price router for {chain.value}")
        try:
            return await router.simulate(chain, token_in, token_out, amount, side, account)
        except SolverError:
            raise
        except Exception as e:
            raise SimulationFailed(f"{chain.value} simulation {token_in}->{token_out} failed: {e}") from e

    async def close(self) -> None:
        for router in set(self.routers.values()):
            await router.close()
