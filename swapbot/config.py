"""
Configuration Management Module

Network settings live in a YAML file; per-run swap settings are supplied
by the operator at start time and never persisted.
"""

import os
from pathlib import Path
from decimal import Decimal, InvalidOperation
from typing import Dict, Any, Iterable, Optional, Union
from dataclasses import dataclass, asdict, replace

import yaml
from web3 import Web3

from .registry import TokenInfo
from .utils import logger, validate_address, ConfigurationError


# Trader Joe V1 router on Avalanche C-Chain
TRADER_JOE_ROUTER = "0x60aE616a2155Ee3d9A68541Ba4544862310933d4"


@dataclass
class NetworkConfig:
    """Bot configuration settings."""

    # Network
    rpc_url: str = "https://api.avax.network/ext/bc/C/rpc"
    chain_id: int = 43114
    router_address: str = TRADER_JOE_ROUTER

    # Gas settings
    max_gas_price_gwei: float = 2.0      # 2 nAVAX admission ceiling
    gas_poll_seconds: float = 10.0
    gas_limit_buffer: float = 1.2        # 20% buffer

    # Swap settings
    slippage_percent: float = 5.0
    deadline_seconds: int = 1200         # 20 minutes
    receipt_poll_seconds: float = 1.0

    # Custody
    derivation_count: int = 100
    kdf_iterations: int = 480_000
    key_file: str = "./swapbot_keys.json"
    tokens_file: Optional[str] = None

    # Operation
    log_level: str = "INFO"
    log_file: Optional[str] = "./swapbot.log"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NetworkConfig":
        """Create config from dictionary, ignoring unknown keys."""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**valid_fields)


class ConfigManager:
    """Loads and saves the network configuration file."""

    def __init__(self, config_path: Union[str, Path] = Path("./swapbot_config.yaml")):
        self.config_path = Path(config_path)

    def load_config(self) -> NetworkConfig:
        """Load configuration, falling back to defaults when the file is missing."""
        if not self.config_path.exists():
            logger.info(f"No config file at {self.config_path}, using defaults")
            return NetworkConfig()

        with open(self.config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        config = NetworkConfig.from_dict(data)
        logger.info(f"Configuration loaded from {self.config_path}")
        return config

    def save_config(self, config: NetworkConfig) -> None:
        """Save configuration to YAML file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

        os.chmod(self.config_path, 0o600)
        logger.info(f"Configuration saved to {self.config_path}")

    def update_config(self, updates: Dict[str, Any]) -> NetworkConfig:
        """Update configuration values."""
        data = self.load_config().to_dict()
        data.update(updates)

        config = NetworkConfig.from_dict(data)
        self.save_config(config)
        return config


def _to_decimal(value: Union[Decimal, str, int, float]) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"Invalid amount: {value}")


@dataclass(frozen=True)
class SwapConfig:
    """
    Settings for one swap run.

    ``input_token`` is spent on the outbound (Forward) leg and
    ``output_token`` is what the treasury receives when a forward target
    is set.
    """
    input_token: TokenInfo
    output_token: TokenInfo
    per_cycle_amount: Decimal
    total_cycle_pairs: int
    interval_seconds: float
    forward_target: Optional[str] = None

    @property
    def total_cycles(self) -> int:
        return 2 * self.total_cycle_pairs

    @property
    def forwarding(self) -> bool:
        return bool(self.forward_target)

    def validate(self, wallet_addresses: Iterable[str] = ()) -> "SwapConfig":
        """
        Check run invariants before any network work.

        Returns:
            Normalized copy (Decimal amount, checksummed forward target)

        Raises:
            ConfigurationError: on the first violated invariant
        """
        if self.input_token is None or self.output_token is None:
            raise ConfigurationError("Select both tokens")

        for token in (self.input_token, self.output_token):
            if not validate_address(token.address):
                raise ConfigurationError(f"Invalid token address for {token.symbol}: {token.address}")

        if self.input_token.address.lower() == self.output_token.address.lower():
            raise ConfigurationError("Input and output tokens must differ")

        amount = _to_decimal(self.per_cycle_amount)
        if not amount.is_finite() or amount <= 0:
            raise ConfigurationError("Swap amount must be greater than 0")

        if int(self.total_cycle_pairs) != self.total_cycle_pairs or self.total_cycle_pairs <= 0:
            raise ConfigurationError("Number of cycle pairs must be a positive integer")

        if self.interval_seconds is None or self.interval_seconds <= 0:
            raise ConfigurationError("Interval must be greater than 0")

        forward_target = None
        if self.forward_target:
            if not validate_address(self.forward_target):
                raise ConfigurationError(f"Invalid forward target address: {self.forward_target}")
            forward_target = Web3.to_checksum_address(self.forward_target)
            rotation = {a.lower() for a in wallet_addresses}
            if forward_target.lower() in rotation:
                raise ConfigurationError("Forward target must not be one of the swap wallets")

        return replace(
            self,
            per_cycle_amount=amount,
            total_cycle_pairs=int(self.total_cycle_pairs),
            forward_target=forward_target,
        )


# Default configuration template
DEFAULT_CONFIG = """
# SwapBot network configuration
# Secrets are NOT stored here - see key_file

rpc_url: https://api.avax.network/ext/bc/C/rpc
chain_id: 43114
router_address: "0x60aE616a2155Ee3d9A68541Ba4544862310933d4"

# Gas Settings
max_gas_price_gwei: 2.0
gas_poll_seconds: 10
gas_limit_buffer: 1.2

# Swap Settings
slippage_percent: 5.0
deadline_seconds: 1200
receipt_poll_seconds: 1.0

# Custody
derivation_count: 100
key_file: ./swapbot_keys.json

# Operation
log_level: INFO
log_file: ./swapbot.log
""".strip()
