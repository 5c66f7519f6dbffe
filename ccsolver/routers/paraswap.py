"""
Paraswap Router - EVM swap simulation and calldata via the Paraswap v5 API.

    GET  /prices                 -> priceRoute (srcAmount, destAmount)
    POST /transactions/{network} -> {to, data, value}

The first call is enough for quoting; the second is only made when an
executable route is requested.
"""

from typing import Any, Awaitable, Callable, Dict, Optional

from ccsolver.core.errors import SimulationFailed, SolverError
from ccsolver.core.intent.intent import ChainId
from ccsolver.routers.base import PriceRouter, SwapRoute, SwapSide
from ccsolver.routers.http import ApiClient
from ccsolver.utils.logger import get_logger

logger = get_logger("paraswap")


PARASWAP_API_URL = "https://apiv5.paraswap.io"
# TokenTransferProxy: the spender Paraswap pulls sold tokens through
PARASWAP_TOKEN_TRANSFER_PROXY = "0x216b4b4ba9f3e719726886d34a177484278bfcae"
BPS = 10_000


class ParaswapRouter(PriceRouter):
    """
    Args:
        decimals: Coroutine resolving a token's decimals (the API needs them)
        api_url: Paraswap API base URL
        network: EVM chain id
        max_impact: Maximum price impact in percent accepted by the API
        slippage_bps: Tolerance applied to the unconstrained leg of executable routes
    """

    def __init__(
        self,
        decimals: Callable[[str], Awaitable[int]],
        api_url: str = PARASWAP_API_URL,
        network: int = 1,
        max_impact: int = 10,
        slippage_bps: int = 100,
        client: Optional[ApiClient] = None,
    ):
        self._decimals = decimals
        self.client = client or ApiClient(api_url)
        self.network = network
        self.max_impact = max_impact
        self.slippage_bps = slippage_bps

    async def _token_decimals(self, token: str) -> int:
        try:
            return await self._decimals(token)
        except SolverError:
            raise
        except Exception as e:
            raise SimulationFailed(f"Could not read decimals of {token}: {e}") from e

    async def price_route(
        self,
        token_in: str,
        token_out: str,
        amount: int,
        side: SwapSide,
        src_decimals: int,
        dst_decimals: int,
    ) -> Dict[str, Any]:
        body = await self.client.get(
            "prices",
            {
                "srcToken": token_in,
                "srcDecimals": src_decimals,
                "destToken": token_out,
                "destDecimals": dst_decimals,
                "amount": amount,
                "side": side.value,
                "network": self.network,
                "maxImpact": self.max_impact,
            },
        )
        route = body.get("priceRoute")
        if not isinstance(route, dict):
            raise SimulationFailed(f"Paraswap has no route {token_in}->{token_out}: {body.get('error', body)}")
        return route

    async def simulate(
        self,
        chain: ChainId,
        token_in: str,
        token_out: str,
        amount: int,
        side: SwapSide = SwapSide.EXACT_IN,
        account: Optional[str] = None,
    ) -> SwapRoute:
        if chain != ChainId.ETHEREUM:
            raise SimulationFailed(f"Paraswap does not route on {chain.value}")

        src_decimals = await self._token_decimals(token_in)
        dst_decimals = await self._token_decimals(token_out)
        route = await self.price_route(token_in, token_out, amount, side, src_decimals, dst_decimals)

        try:
            src_amount = int(route["srcAmount"])
            dest_amount = int(route["destAmount"])
        except (KeyError, TypeError, ValueError) as e:
            raise SimulationFailed(f"Malformed Paraswap priceRoute: {route}") from e

        if side == SwapSide.EXACT_IN:
            amount_in, amount_out = amount, dest_amount
        else:
            amount_in, amount_out = src_amount, amount

        logger.debug(f"Paraswap {side.value} {token_in}->{token_out}: in={amount_in} out={amount_out}")

        result = SwapRoute(
            chain=chain,
            token_in=token_in,
            token_out=token_out,
            side=side,
            amount_in=amount_in,
            amount_out=amount_out,
            raw=route,
        )
        if account is None:
            return result
        return await self._build(result, route, account, src_decimals, dst_decimals)

    async def _build(
        self,
        route: SwapRoute,
        price_route: Dict[str, Any],
        account: str,
        src_decimals: int,
        dst_decimals: int,
    ) -> SwapRoute:
        # Bound the unconstrained leg by the slippage tolerance
        if route.side == SwapSide.EXACT_IN:
            src_amount = route.amount_in
            dest_amount = route.amount_out * (BPS - self.slippage_bps) // BPS
        else:
            src_amount = route.amount_in * (BPS + self.slippage_bps) // BPS
            dest_amount = route.amount_out

        tx = await self.client.post(
            f"transactions/{self.network}",
            json={
                "srcToken": route.token_in,
                "destToken": route.token_out,
                "srcAmount": str(src_amount),
                "destAmount": str(dest_amount),
                "priceRoute": price_route,
                "userAddress": account,
                "txOrigin": account,
                "partner": "paraswap.io",
                "srcDecimals": src_decimals,
                "destDecimals": dst_decimals,
            },
            params={"ignoreChecks": "true", "ignoreGasEstimate": "true", "onlyParams": "false"},
        )

        target, data = tx.get("to"), tx.get("data")
        if not target or not data:
            raise SimulationFailed(f"Paraswap returned no calldata: {tx}")

        return SwapRoute(
            chain=route.chain,
            token_in=route.token_in,
            token_out=route.token_out,
            side=route.side,
            amount_in=src_amount,
            amount_out=dest_amount,
            call_data=data,
            target=target,
            spender=price_route.get("tokenTransferProxy") or PARASWAP_TOKEN_TRANSFER_PROXY,
            value=int(tx.get("value") or 0),
            raw=tx,
        )

    async def close(self) -> None:
        await self.client.close()
