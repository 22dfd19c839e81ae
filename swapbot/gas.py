"""
Fee Guard

Polls the network gas price on a fixed interval and answers whether a
swap may be admitted right now. Until the first successful poll the
price is unknown and treated as too high.
"""

import time
import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol

from web3 import Web3

from .utils import logger, GasPriceError


class FeeOracle(Protocol):
    async def gas_price(self) -> int:
        ...


@dataclass(frozen=True)
class FeeObservation:
    """Latest gas price sample."""
    price_wei: Optional[int]
    price_gwei: Optional[float]
    is_above_threshold: bool
    observed_at: Optional[float]

    @classmethod
    def unknown(cls) -> "FeeObservation":
        return cls(price_wei=None, price_gwei=None, is_above_threshold=True, observed_at=None)

    @property
    def is_known(self) -> bool:
        return self.price_wei is not None


class FeeGuard:
    """
    Admission gate on network fees.

    A swap is admitted only while the last observed gas price is strictly
    below ``ceiling_gwei``.
    """

    def __init__(self, oracle: FeeOracle, ceiling_gwei: float = 2.0, poll_interval: float = 10.0):
        self.oracle = oracle
        self.ceiling_gwei = ceiling_gwei
        self.poll_interval = poll_interval

        self._observation = FeeObservation.unknown()
        self._task: Optional[asyncio.Task] = None
        self.consecutive_failures = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def current_fee_level(self) -> FeeObservation:
        return self._observation

    async def refresh(self) -> FeeObservation:
        """
        Poll the oracle once.

        On failure the previous observation is kept and the failure
        counter is incremented.
        """
        try:
            price_wei = await self.oracle.gas_price()
            if price_wei is None or price_wei < 0:
                raise GasPriceError(f"Invalid gas price: {price_wei}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.consecutive_failures += 1
            logger.warning(
                f"Gas price poll failed ({self.consecutive_failures} in a row): {e}"
            )
            return self._observation

        price_gwei = float(Web3.from_wei(int(price_wei), 'gwei'))
        self._observation = FeeObservation(
            price_wei=int(price_wei),
            price_gwei=price_gwei,
            is_above_threshold=price_gwei >= self.ceiling_gwei,
            observed_at=time.time(),
        )
        self.consecutive_failures = 0

        logger.debug(f"Gas price: {price_gwei:.4f} gwei (ceiling {self.ceiling_gwei})")
        return self._observation

    async def _poll_loop(self):
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.refresh()

    async def start(self) -> FeeObservation:
        """Take one sample, then keep polling in the background."""
        observation = await self.refresh()
        if not self.is_running:
            self._task = asyncio.create_task(self._poll_loop())
            logger.info(f"Fee guard started (ceiling {self.ceiling_gwei} gwei, every {self.poll_interval}s)")
        return observation

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Fee guard stopped")
