"""
Solver context - wires the configured components together.
"""

from typing import Dict, List, Optional

from ccsolver.chains.base import ChainAdapter
from ccsolver.chains.evm import EvmChainAdapter
from ccsolver.chains.solana import SolanaChainAdapter
from ccsolver.core.config import SolverConfig
from ccsolver.core.execution.orchestrator import ExecutionOrchestrator
from ccsolver.core.intent.intent import ChainId
from ccsolver.core.intent.store import IntentStore
from ccsolver.core.quoting.engine import QuotingEngine
from ccsolver.core.quoting.fees import CoinGeckoPriceFeed, FeeSchedule, FeeUpdater
from ccsolver.core.quoting.tokens import DEFAULT_TOKENS, TokenRegistry
from ccsolver.network.channel import MessageChannel, WebSocketChannel
from ccsolver.network.identity import MessageSigner
from ccsolver.network.session import AuctionSession
from ccsolver.routers.jupiter import JupiterRouter
from ccsolver.routers.multi import ChainRouter
from ccsolver.routers.paraswap import ParaswapRouter
from ccsolver.utils.logger import get_logger

logger = get_logger("context")


class SolverContext:
    """
    Owns every long-lived component of a running solver.

    Built once from a SolverConfig; ``close`` releases network resources.
    """

    def __init__(
        self,
        config: SolverConfig,
        adapters: Dict[ChainId, ChainAdapter],
        router: ChainRouter,
        tokens: Optional[TokenRegistry] = None,
        signer: Optional[MessageSigner] = None,
    ):
        self.config = config
        self.adapters = adapters
        self.router = router
        self.tokens = tokens or TokenRegistry(DEFAULT_TOKENS)
        self.signer = signer or MessageSigner(config.signing_key, prefix_messages=config.prefix_messages)
        self.store = IntentStore()
        self.fees = FeeSchedule(config.commission, config.flat_fees)
        self.engine = QuotingEngine(
            router,
            self.fees,
            self.tokens,
            bridge_symbol=config.bridge_token,
            min_dust=config.min_dust,
        )
        self.orchestrator = ExecutionOrchestrator(
            adapters,
            router,
            self.tokens,
            bridge_symbol=config.bridge_token,
            store=self.store,
        )
        self.fee_updater: Optional[FeeUpdater] = None

    @classmethod
    def from_config(cls, config: SolverConfig) -> "SolverContext":
        """Create adapters and routers for every enabled chain."""
        adapters: Dict[ChainId, ChainAdapter] = {}
        router = ChainRouter()

        if config.chain_enabled(ChainId.ETHEREUM):
            eth = config.ethereum
            evm = EvmChainAdapter(
                eth.rpc_url,
                eth.private_key,
                escrow_address=eth.escrow_address,
                solver_address=eth.solver_address,
                chain_id=eth.chain_id,
                confirm_timeout=config.confirm_timeout,
                poll_interval=config.confirm_poll_interval,
            )
            adapters[ChainId.ETHEREUM] = evm
            router.register(
                ChainId.ETHEREUM,
                ParaswapRouter(evm.token_decimals, api_url=eth.paraswap_api_url, network=eth.chain_id),
            )

        if config.chain_enabled(ChainId.SOLANA):
            sol = config.solana
            adapters[ChainId.SOLANA] = SolanaChainAdapter(
                sol.rpc_url,
                sol.private_key,
                sol.escrow_program,
                auctioneer=sol.auctioneer,
                solver_address=sol.solver_address,
                confirm_timeout=config.confirm_timeout,
                poll_interval=config.confirm_poll_interval,
            )
            router.register(ChainId.SOLANA, JupiterRouter(api_url=sol.jupiter_api_url))

        context = cls(config, adapters, router)

        if config.fee_update_interval > 0 and ChainId.ETHEREUM in adapters:
            decimals = context.tokens.get(config.bridge_token, ChainId.ETHEREUM).decimals
            context.fee_updater = FeeUpdater(
                context.fees,
                adapters[ChainId.ETHEREUM].gas_price,
                CoinGeckoPriceFeed(),
                interval=config.fee_update_interval,
                decimals=decimals,
            )

        logger.info(f"Solver context ready: chains={[c.value for c in adapters]}")
        return context

    @property
    def solver_addresses(self) -> List[str]:
        """Payout addresses in enabled-chain order."""
        return [self.adapters[chain].solver_address for chain in self.config.enabled_chains if chain in self.adapters]

    def create_session(self, channel: Optional[MessageChannel] = None) -> AuctionSession:
        return AuctionSession(
            channel or WebSocketChannel(self.config.auction_endpoint),
            self.signer,
            self.config.solver_id,
            self.solver_addresses,
            self.store,
            self.engine,
            self.orchestrator,
            enabled_chains=self.adapters.keys(),
            bid_ttl=self.config.bid_ttl_seconds,
            report_settlements=self.config.report_settlements,
        )

    async def start(self) -> None:
        if self.fee_updater is not None:
            self.fee_updater.start()

    async def close(self) -> None:
        if self.fee_updater is not None:
            await self.fee_updater.stop()
        await self.router.close()
        for adapter in self.adapters.values():
            await adapter.close()
