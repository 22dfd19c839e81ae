"""
Utility Module

Logging, error taxonomy, unit conversion and formatting helpers shared by
every SwapBot component.

SECURITY:
- Log messages are sanitized so private keys and passwords never reach
  the console or the log file
- Transaction hashes are shortened before logging
"""

import os
import re
import logging
from decimal import Decimal, ROUND_DOWN
from typing import Optional, Union

from web3 import Web3
from rich.logging import RichHandler
from rich.console import Console


# Global console for Rich output
console = Console()


class SwapBotError(Exception):
    """Base class for every SwapBot failure."""
    pass


# Configuration errors: rejected before any network or crypto work

class ConfigurationError(SwapBotError):
    """Invalid operator input (addresses, amounts, tokens, keys)."""
    pass


class WeakPasswordError(ConfigurationError):
    """Password shorter than the vault minimum."""
    pass


class InvalidPhraseError(ConfigurationError):
    """Recovery phrase is not a 12 or 24 word BIP-39 mnemonic."""
    pass


# Custody errors

class CustodyError(SwapBotError):
    """Key vault could not hand out secrets."""
    pass


class WrongPasswordError(CustodyError):
    pass


class NoStoredSecretsError(CustodyError):
    pass


class NoDecryptableSecretsError(CustodyError):
    pass


# Transient network errors

class GasPriceError(SwapBotError):
    """Custom exception for gas price issues."""
    pass


# Execution errors: fatal to the current run

class SwapError(SwapBotError):
    """A single swap attempt failed."""
    pass


class InsufficientBalanceError(SwapError):
    """Wallet does not hold the amount it was asked to swap."""
    pass


class ApprovalError(SwapError):
    pass


class QuoteError(SwapError):
    pass


class TransactionError(SwapError):
    """Custom exception for transaction failures."""
    pass


class NoOutputDetectedError(SwapError):
    """Swap confirmed but the output balance did not increase."""
    pass


class SwapExecutionError(SwapError):
    """Unexpected failure while executing a swap."""
    pass


class ForwardError(SwapBotError):
    """Post-swap transfer to the treasury failed (non-fatal)."""
    pass


class SchedulerError(SwapBotError):
    pass


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Prevents private keys and passwords from leaking into logs.
    """

    # Patterns to redact from logs
    SENSITIVE_PATTERNS = [
        (r'0x[a-fA-F0-9]{64}\b', '[PRIVATE_KEY_REDACTED]'),
        (r'\b[a-fA-F0-9]{64}\b', '[KEY_REDACTED]'),
        (r'password["\']?\s*[:=]\s*["\']?[^\s"\']+["\']?', 'password=[REDACTED]'),
        (r'(private_?key|secret)["\']?\s*[:=]\s*["\']?[^\s"\']+["\']?', r'\1=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _sanitize(self, msg: str) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional log file.

    Calling it again reconfigures the same underlying logger, so module
    level references to ``logger`` stay valid.
    """
    logger = logging.getLogger("swapbot")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.propagate = True

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(getattr(logging, log_level.upper()))
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(rich_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    return SecureLogger(logger)


# Initialize global secure logger (console only until the CLI reconfigures it)
logger = setup_logging()


# Unit conversion

def to_base_units(amount: Union[Decimal, str, int], decimals: int) -> int:
    """Convert a human amount to integer base units, rounding down."""
    value = Decimal(str(amount)) * (Decimal(10) ** decimals)
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def from_base_units(raw_amount: int, decimals: int) -> Decimal:
    """Convert integer base units to an exact Decimal amount."""
    return Decimal(raw_amount) / (Decimal(10) ** decimals)


# Formatting utilities

def format_amount(amount: Decimal, symbol: str = "") -> str:
    """Format a token amount with precision depending on magnitude."""
    value = Decimal(amount)
    if value == 0:
        text = "0"
    elif abs(value) < Decimal("0.0001"):
        text = f"{value:.8f}"
    elif abs(value) < 1:
        text = f"{value:.6f}"
    elif abs(value) < 1000:
        text = f"{value:.4f}"
    else:
        text = f"{value:,.2f}"
    return f"{text} {symbol}".strip()


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human-readable string."""
    if seconds < 60:
        return f"{seconds:g}s"
    seconds = int(seconds)
    if seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


def format_address(address: str, length: int = 6) -> str:
    """Format Ethereum address with ellipsis."""
    if len(address) <= length * 2 + 2:
        return address
    return f"{address[:length + 2]}...{address[-length:]}"


def format_tx_hash(tx_hash: str, length: int = 10) -> str:
    """Format transaction hash with ellipsis."""
    if not tx_hash or len(tx_hash) <= length * 2:
        return tx_hash
    return f"{tx_hash[:length]}...{tx_hash[-length + 2:]}"


# Validation utilities

def normalize_private_key(key: str) -> str:
    """
    Return the key as lowercase ``0x`` + 64 hex characters.

    Raises:
        ConfigurationError: if the key is not 32 bytes of hex
    """
    if not key or not isinstance(key, str):
        raise ConfigurationError("Private key is empty")

    key_clean = key.strip()
    if key_clean[:2].lower() == "0x":
        key_clean = key_clean[2:]

    if len(key_clean) != 64:
        raise ConfigurationError("Private key must be 64 hex characters")
    try:
        int(key_clean, 16)
    except ValueError:
        raise ConfigurationError("Private key must be valid hex")

    return "0x" + key_clean.lower()


def validate_address(address: str) -> bool:
    """
    Validate Ethereum address format.

    Mixed-case addresses must carry a correct EIP-55 checksum.
    """
    if not address or not isinstance(address, str):
        return False

    try:
        return bool(Web3.is_address(address))
    except (ValueError, TypeError):
        return False


def sanitize_error_message(error: str) -> str:
    """Sanitize error messages to remove sensitive data."""
    if not isinstance(error, str):
        error = str(error)

    patterns = [
        (r'0x[a-fA-F0-9]{64}\b', '[PRIVATE_KEY]'),
        (r'https?://[^\s]+', '[URL]'),
        (r'password["\']?\s*[:=]\s*\S+', 'password=[REDACTED]'),
    ]

    sanitized = error
    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized
