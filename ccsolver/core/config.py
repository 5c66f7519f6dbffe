"""
Solver configuration.

Read once at startup from the process environment, optionally seeded from a
``.env`` file. Anything missing or malformed is reported as ConfigError
before the solver connects to anything.
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ccsolver.chains.evm import ESCROW_SC_ETHEREUM
from ccsolver.chains.solana import AUCTIONEER_SOLANA
from ccsolver.core.errors import ConfigError, MissingConfig
from ccsolver.core.intent.intent import ChainId
from ccsolver.core.quoting.fees import DEFAULT_FLAT_FEES, parse_flat_fees
from ccsolver.crypto import is_valid_address
from ccsolver.routers.jupiter import JUPITER_API_URL
from ccsolver.routers.paraswap import PARASWAP_API_URL


class EthereumConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    rpc_url: str
    private_key: str
    solver_address: Optional[str] = None
    escrow_address: str = ESCROW_SC_ETHEREUM
    chain_id: int = 1
    paraswap_api_url: str = PARASWAP_API_URL

    @field_validator("solver_address", "escrow_address")
    @classmethod
    def _evm_address(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not is_valid_address(value):
            raise ValueError(f"not an EVM address: {value}")
        return value


class SolanaConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    rpc_url: str
    private_key: str
    escrow_program: str
    solver_address: Optional[str] = None
    auctioneer: str = AUCTIONEER_SOLANA
    jupiter_api_url: str = JUPITER_API_URL


class SolverConfig(BaseModel):
    """
    Everything the solver needs to run.

    Attributes:
        auction_endpoint: WebSocket URL of the auction feed
        solver_id: Identifier registered with the feed
        signing_key: Hex secp256k1 key that signs feed messages
        commission: Commission per 100_000 of the bridged amount
        enabled_chains: Ledgers the solver quotes and settles on
        bridge_token: Bridging token symbol
        min_dust: Offers below this (in bridging-token units) are dropped
        flat_fees: (src, dst) -> (src_cost, dst_cost)
        fee_update_interval: Seconds between fee refreshes, 0 disables
        confirm_timeout: Seconds allowed for a transaction to confirm
        confirm_poll_interval: Initial receipt polling interval
        bid_ttl_seconds: Bids without a result are dropped after this
        prefix_messages: Sign the EIP-191 personal hash of feed messages
        report_settlements: Report settlement outcomes back to the feed
    """
    model_config = ConfigDict(frozen=True)

    auction_endpoint: str
    solver_id: str
    signing_key: str
    commission: int = Field(ge=0)
    enabled_chains: Tuple[ChainId, ...] = (ChainId.ETHEREUM, ChainId.SOLANA)
    bridge_token: str = "USDT"
    min_dust: int = Field(default=0, ge=0)
    flat_fees: Dict[Tuple[ChainId, ChainId], Tuple[int, int]] = Field(
        default_factory=lambda: dict(DEFAULT_FLAT_FEES)
    )
    fee_update_interval: float = Field(default=0.0, ge=0)
    confirm_timeout: float = Field(default=120.0, gt=0)
    confirm_poll_interval: float = Field(default=2.0, gt=0)
    bid_ttl_seconds: float = Field(default=300.0, gt=0)
    prefix_messages: bool = True
    report_settlements: bool = False
    ethereum: Optional[EthereumConfig] = None
    solana: Optional[SolanaConfig] = None

    @field_validator("auction_endpoint")
    @classmethod
    def _websocket_url(cls, value: str) -> str:
        if not value.startswith(("ws://", "wss://")):
            raise ValueError("auction endpoint must be a ws:// or wss:// URL")
        return value

    @field_validator("enabled_chains")
    @classmethod
    def _at_least_one_chain(cls, value: Tuple[ChainId, ...]) -> Tuple[ChainId, ...]:
        if not value:
            raise ValueError("at least one chain must be enabled")
        return value

    @model_validator(mode="after")
    def _enabled_chains_configured(self) -> "SolverConfig":
        for chain in self.enabled_chains:
            if getattr(self, chain.value) is None:
                raise ValueError(f"{chain.value} is enabled but not configured")
        return self

    def chain_enabled(self, chain: ChainId) -> bool:
        return chain in self.enabled_chains

    def redacted(self) -> dict:
        """Dump with secrets masked, for display."""
        data = self.model_dump(mode="json", exclude={"flat_fees"})
        data["signing_key"] = "***"
        for chain in ("ethereum", "solana"):
            if data.get(chain):
                data[chain]["private_key"] = "***"
        data["flat_fees"] = {f"{s.value}->{d.value}": list(c) for (s, d), c in self.flat_fees.items()}
        return data


# =============================================================================
# Loading
# =============================================================================


def _get(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _require(env: Mapping[str, str], *names: str) -> str:
    for name in names:
        value = _get(env, name)
        if value is not None:
            return value
    raise MissingConfig(names[0])


def _bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


def _parse_chains(raw: str) -> List[ChainId]:
    chains = []
    for name in raw.split(","):
        name = name.strip().lower()
        if not name:
            continue
        try:
            chains.append(ChainId(name))
        except ValueError:
            raise ConfigError(f"Unknown chain in ENABLED_CHAINS: {name}") from None
    return chains


def config_from_env(env: Mapping[str, str]) -> SolverConfig:
    """
    Build a SolverConfig from an environment mapping.

    Raises:
        ConfigError: if a required value is missing or invalid
    """
    enabled = _parse_chains(_get(env, "ENABLED_CHAINS", "ethereum,solana"))

    data: Dict[str, object] = {
        "auction_endpoint": _require(env, "COMPOSABLE_ENDPOINT"),
        "solver_id": _require(env, "SOLVER_ID"),
        "signing_key": _require(env, "SOLVER_PRIVATE_KEY", "ETHEREUM_PKEY"),
        "commission": _require(env, "COMMISSION", "COMISSION"),
        "enabled_chains": enabled,
        "bridge_token": _get(env, "BRIDGE_TOKEN", "USDT"),
        "min_dust": _get(env, "MIN_DUST", "0"),
        "fee_update_interval": _get(env, "FEE_UPDATE_INTERVAL", "0"),
        "confirm_timeout": _get(env, "CONFIRM_TIMEOUT", "120"),
        "confirm_poll_interval": _get(env, "CONFIRM_POLL_INTERVAL", "2"),
        "bid_ttl_seconds": _get(env, "BID_TTL_SECONDS", "300"),
        "prefix_messages": _bool(_get(env, "PREFIX_MESSAGES"), True),
        "report_settlements": _bool(_get(env, "REPORT_SETTLEMENTS"), False),
    }

    raw_fees = _get(env, "FLAT_FEES")
    if raw_fees is not None:
        try:
            overrides = parse_flat_fees(json.loads(raw_fees))
        except (json.JSONDecodeError, ValueError, AttributeError) as e:
            raise ConfigError(f"Invalid FLAT_FEES: {e}") from e
        data["flat_fees"] = {**DEFAULT_FLAT_FEES, **overrides}

    if ChainId.ETHEREUM in enabled:
        data["ethereum"] = {
            "rpc_url": _require(env, "ETHEREUM_RPC"),
            "private_key": _require(env, "ETHEREUM_PKEY"),
            "solver_address": _get(env, "SOLVER_ADDRESS_ETHEREUM"),
            "escrow_address": _get(env, "ESCROW_ETHEREUM", ESCROW_SC_ETHEREUM),
            "chain_id": _get(env, "ETHEREUM_CHAIN_ID", "1"),
            "paraswap_api_url": _get(env, "PARASWAP_API_URL", PARASWAP_API_URL),
        }

    if ChainId.SOLANA in enabled:
        data["solana"] = {
            "rpc_url": _require(env, "SOLANA_RPC"),
            "private_key": _require(env, "SOLANA_KEYPAIR"),
            "escrow_program": _require(env, "ESCROW_PROGRAM_SOLANA"),
            "solver_address": _get(env, "SOLVER_ADDRESS_SOLANA"),
            "auctioneer": _get(env, "AUCTIONEER_SOLANA", AUCTIONEER_SOLANA),
            "jupiter_api_url": _get(env, "JUPITER_API_URL", JUPITER_API_URL),
        }

    try:
        return SolverConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors(include_url=False)
        )
        raise ConfigError(f"Invalid configuration: {problems}") from e


def load_config(env_file: Optional[str] = None) -> SolverConfig:
    """
    Load configuration from the environment.

    Args:
        env_file: Optional .env file; values already in the environment win

    Raises:
        ConfigError: if the file is missing or a value is missing or invalid
    """
    if env_file is not None:
        if not Path(env_file).is_file():
            raise ConfigError(f"Env file not found: {env_file}")
        load_dotenv(env_file)
    else:
        load_dotenv()
    return config_from_env(os.environ)
