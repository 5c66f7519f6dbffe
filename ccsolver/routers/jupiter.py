"""
Jupiter Router - Solana swap quotes and transactions via the Jupiter v6 API.

    GET  /quote -> route with inAmount / outAmount
    POST /swap  -> base64 serialized transaction for userPublicKey
"""

from typing import Optional

from ccsolver.core.errors import SimulationFailed
from ccsolver.core.intent.intent import ChainId
from ccsolver.routers.base import PriceRouter, SwapRoute, SwapSide
from ccsolver.routers.http import ApiClient
from ccsolver.utils.logger import get_logger

logger = get_logger("jupiter")


JUPITER_API_URL = "https://quote-api.jup.ag/v6"

SWAP_MODES = {
    SwapSide.EXACT_IN: "ExactIn",
    SwapSide.EXACT_OUT: "ExactOut",
}


class JupiterRouter(PriceRouter):
    """
    Args:
        api_url: Jupiter quote API base URL
        slippage_bps: Slippage tolerance passed to the quote
    """

    def __init__(
        self,
        api_url: str = JUPITER_API_URL,
        slippage_bps: int = 100,
        client: Optional[ApiClient] = None,
    ):
        self.client = client or ApiClient(api_url)
        self.slippage_bps = slippage_bps

    async def simulate(
        self,
        chain: ChainId,
        token_in: str,
        token_out: str,
        amount: int,
        side: SwapSide = SwapSide.EXACT_IN,
        account: Optional[str] = None,
    ) -> SwapRoute:
        if chain != ChainId.SOLANA:
            raise SimulationFailed(f"Jupiter does not route on {chain.value}")

        quote = await self.client.get(
            "quote",
            {
                "inputMint": token_in,
                "outputMint": token_out,
                "amount": amount,
                "swapMode": SWAP_MODES[side],
                "slippageBps": self.slippage_bps,
            },
        )
        if "error" in quote:
            raise SimulationFailed(f"Jupiter has no route {token_in}->{token_out}: {quote['error']}")

        try:
            amount_in = int(quote["inAmount"])
            amount_out = int(quote["outAmount"])
        except (KeyError, TypeError, ValueError) as e:
            raise SimulationFailed(f"Malformed Jupiter quote: {quote}") from e

        logger.debug(f"Jupiter {SWAP_MODES[side]} {token_in}->{token_out}: in={amount_in} out={amount_out}")

        call_data = None
        if account is not None:
            swap = await self.client.post(
                "swap",
                json={
                    "quoteResponse": quote,
                    "userPublicKey": account,
                    "wrapAndUnwrapSol": True,
                    "dynamicComputeUnitLimit": True,
                    "prioritizationFeeLamports": "auto",
                },
            )
            call_data = swap.get("swapTransaction")
            if not call_data:
                raise SimulationFailed(f"Jupiter returned no swap transaction: {swap}")

        return SwapRoute(
            chain=chain,
            token_in=token_in,
            token_out=token_out,
            side=side,
            amount_in=amount_in,
            amount_out=amount_out,
            call_data=call_data,
            raw=quote,
        )

    async def close(self) -> None:
        await self.client.close()
