"""Price routers"""
from ccsolver.routers.base import PriceRouter, SwapRoute, SwapSide
from ccsolver.routers.multi import ChainRouter
from ccsolver.routers.paraswap import ParaswapRouter
from ccsolver.routers.jupiter import JupiterRouter

__all__ = [
    "PriceRouter",
    "SwapRoute",
    "SwapSide",
    "ChainRouter",
    "ParaswapRouter",
    "JupiterRouter",
]
