"""
Swap Scheduler - Multi-Wallet Run Coordinator
=============================================

Drives repeated swaps across a rotating set of wallets.

Without a forward target the run ping-pongs: Forward swaps the input
token into the output token, Reverse swaps the received amount back, and
each cycle uses the next wallet in round-robin order. With a forward
target every cycle is a Forward swap of the configured amount and the
proceeds are sent to the target.

Cycles are strictly sequential. Between cycles the loop waits on a stop
event, so stop() takes effect immediately and nothing is re-armed after it.
"""

import time
import asyncio
from enum import Enum
from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional, Sequence

from rich.table import Table
from rich import box

from .config import SwapConfig
from .derivation import address_of
from .executor import SwapExecutor, SwapResult
from .gas import FeeGuard
from .utils import (
    logger,
    format_address,
    format_amount,
    format_tx_hash,
    normalize_private_key,
    ConfigurationError,
    SchedulerError,
)


class Direction(str, Enum):
    FORWARD = "forward"   # input token -> output token
    REVERSE = "reverse"   # output token -> input token

    def opposite(self) -> "Direction":
        return Direction.REVERSE if self is Direction.FORWARD else Direction.FORWARD


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class CycleState:
    """Progress of the current (or last) run."""
    executed_count: int = 0
    direction: Direction = Direction.FORWARD
    active_wallet_index: int = 0
    last_amount_carried: Decimal = Decimal(0)
    last_execution_at: Optional[str] = None
    is_running: bool = False
    status: RunStatus = RunStatus.IDLE
    fee_delays: int = 0
    next_cycle_at: Optional[float] = None
    error: Optional[str] = None
    failed_cycle: Optional[int] = None
    failed_wallet_index: Optional[int] = None


@dataclass
class CycleRecord:
    """One successful cycle."""
    cycle: int
    wallet_index: int
    wallet_address: str
    direction: Direction
    from_symbol: str
    to_symbol: str
    amount_in: Decimal
    amount_out: Decimal
    tx_hash: str
    forward_tx_hash: Optional[str] = None
    forward_error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


class SwapScheduler:
    """
    Runs a SwapConfig to completion, one cycle at a time.

    Handles:
    - Round-robin wallet rotation
    - Direction alternation (or fixed Forward when forwarding)
    - Fee gating: a gated tick waits one interval and consumes nothing
    - Stop at any time, including while a swap is in flight
    """

    def __init__(
        self,
        executor: SwapExecutor,
        fee_guard: FeeGuard,
        clock: Callable[[], float] = time.time,
    ):
        self.executor = executor
        self.fee_guard = fee_guard
        self.clock = clock

        self._state = CycleState()
        self._history: List[CycleRecord] = []
        self._config: Optional[SwapConfig] = None
        self._secrets: List[str] = []
        self._addresses: List[str] = []
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> CycleState:
        return replace(self._state)

    @property
    def history(self) -> List[CycleRecord]:
        return list(self._history)

    @property
    def config(self) -> Optional[SwapConfig]:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    def start(self, config: SwapConfig, secrets: Sequence[str]) -> asyncio.Task:
        """
        Validate inputs and launch the run loop on the current event loop.

        The first cycle runs immediately.

        Raises:
            SchedulerError: a run is already in progress
            ConfigurationError: invalid config or secret list
        """
        if self._task is not None and not self._task.done():
            raise SchedulerError("A run is already in progress")

        if not secrets:
            raise ConfigurationError("At least one wallet is required")
        normalized = [normalize_private_key(s) for s in secrets]
        addresses = [address_of(s) for s in normalized]
        config = config.validate(addresses)

        loop = asyncio.get_running_loop()

        self._config = config
        self._secrets = normalized
        self._addresses = addresses
        self._history = []
        self._state = CycleState(
            last_amount_carried=config.per_cycle_amount,
            is_running=True,
            status=RunStatus.RUNNING,
        )
        self._stop_event = asyncio.Event()

        logger.info(
            f"Starting run: {config.total_cycle_pairs} cycle pair(s) of "
            f"{format_amount(config.per_cycle_amount, config.input_token.symbol)} "
            f"-> {config.output_token.symbol} across {len(addresses)} wallet(s), "
            f"every {config.interval_seconds}s"
        )
        if config.forwarding:
            logger.info(f"Proceeds forwarded to {format_address(config.forward_target)}")

        self._task = loop.create_task(self._run())
        return self._task

    def stop(self):
        """Stop the run. Safe to call in any state, any number of times."""
        if self._state.status == RunStatus.RUNNING:
            self._state.status = RunStatus.STOPPED
            logger.info(f"Run stopped after {self._state.executed_count} cycle(s)")
        self._state.is_running = False
        self._state.next_cycle_at = None
        if self._stop_event is not None:
            self._stop_event.set()

    async def wait(self) -> CycleState:
        """Wait for the run loop to end and return the final state."""
        if self._task is not None:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        return self.state

    def seconds_until_next(self) -> float:
        """Countdown to the next armed tick, 0 when nothing is armed."""
        if not self._state.is_running or self._state.next_cycle_at is None:
            return 0.0
        return max(0.0, self._state.next_cycle_at - self.clock())

    def _stopped(self) -> bool:
        return self._stop_event is None or self._stop_event.is_set()

    async def _run(self):
        try:
            while not self._stopped():
                if not await self._tick():
                    break
                await self._delay(self._config.interval_seconds)
        except asyncio.CancelledError:
            if self._state.status == RunStatus.RUNNING:
                self._state.status = RunStatus.STOPPED
            raise
        except Exception as e:
            logger.exception("Scheduler loop crashed")
            self._fail(f"Run aborted: {e}")
        finally:
            self._state.is_running = False
            self._state.next_cycle_at = None
            self._secrets = []

    async def _delay(self, seconds: float):
        if self._stopped():
            return
        self._state.next_cycle_at = self.clock() + seconds
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
        self._state.next_cycle_at = None

    def _amount_to_use(self) -> Decimal:
        config = self._config
        if config.forwarding or self._state.executed_count == 0:
            return config.per_cycle_amount
        return self._state.last_amount_carried

    def _tokens_for(self, direction: Direction):
        config = self._config
        if direction is Direction.FORWARD:
            return config.input_token, config.output_token
        return config.output_token, config.input_token

    async def _tick(self) -> bool:
        """
        Run one cycle.

        Returns:
            True when the loop should re-arm after the interval
        """
        observation = self.fee_guard.current_fee_level()
        if observation.is_above_threshold:
            self._state.fee_delays += 1
            price = f"{observation.price_gwei:.4f} gwei" if observation.price_gwei is not None else "unknown"
            logger.warning(
                f"Gas price {price} at or above ceiling, delaying cycle "
                f"{self._state.executed_count + 1} by {self._config.interval_seconds}s"
            )
            return True

        state = self._state
        cycle = state.executed_count + 1
        wallet_index = state.active_wallet_index
        direction = state.direction
        from_token, to_token = self._tokens_for(direction)
        amount = self._amount_to_use()
        forward_to = self._config.forward_target if direction is Direction.FORWARD else None

        logger.info(
            f"Cycle {cycle}/{self._config.total_cycles}: wallet {wallet_index} "
            f"({format_address(self._addresses[wallet_index])}) "
            f"{format_amount(amount, from_token.symbol)} -> {to_token.symbol}"
        )

        result = await self.executor.execute_swap(
            self._secrets[wallet_index],
            from_token.address,
            to_token.address,
            amount,
            forward_to=forward_to,
        )

        if result.success:
            self._record_success(result, cycle, wallet_index, direction, from_token, to_token, amount)
        else:
            message = (
                f"Cycle {cycle} failed on wallet {wallet_index} "
                f"({format_address(self._addresses[wallet_index])}): {result.error}"
            )
            if self._stopped():
                self._state.error = message
                logger.error(message)
            else:
                self._fail(message, cycle=cycle, wallet_index=wallet_index)
            return False

        # The in-flight swap finished after stop(); record it but arm nothing.
        if self._stopped():
            return False

        if self._state.executed_count >= self._config.total_cycles:
            self._state.status = RunStatus.COMPLETED
            self._state.is_running = False
            logger.info(f"Run completed: {self._state.executed_count} cycle(s)")
            return False

        return True

    def _record_success(self, result: SwapResult, cycle, wallet_index, direction,
                        from_token, to_token, amount):
        receipt = result.receipt
        state = self._state

        state.executed_count += 1
        state.last_amount_carried = receipt.amount_received
        state.last_execution_at = datetime.now().isoformat()
        if not self._config.forwarding:
            state.direction = direction.opposite()
        state.active_wallet_index = (wallet_index + 1) % len(self._addresses)

        forward = receipt.forward
        self._history.append(CycleRecord(
            cycle=cycle,
            wallet_index=wallet_index,
            wallet_address=receipt.wallet_address,
            direction=direction,
            from_symbol=from_token.symbol,
            to_symbol=to_token.symbol,
            amount_in=amount,
            amount_out=receipt.amount_received,
            tx_hash=receipt.tx_hash,
            forward_tx_hash=forward.tx_hash if forward else None,
            forward_error=str(forward.error) if forward and forward.error else None,
        ))

        logger.info(
            f"Cycle {cycle} done: received {format_amount(receipt.amount_received, to_token.symbol)} "
            f"({format_tx_hash(receipt.tx_hash)})"
        )

    def _fail(self, message: str, cycle: Optional[int] = None, wallet_index: Optional[int] = None):
        self._state.status = RunStatus.FAILED
        self._state.is_running = False
        self._state.error = message
        self._state.failed_cycle = cycle
        self._state.failed_wallet_index = wallet_index
        if self._stop_event is not None:
            self._stop_event.set()
        logger.error(message)

    def get_history_table(self) -> Table:
        """Rich table of completed cycles."""
        table = Table(title="Swap History", box=box.ROUNDED)
        table.add_column("Cycle", justify="right", style="cyan")
        table.add_column("Wallet", style="magenta")
        table.add_column("Direction")
        table.add_column("In", justify="right")
        table.add_column("Out", justify="right", style="green")
        table.add_column("Tx")
        table.add_column("Forward")

        for record in self._history:
            if record.forward_tx_hash:
                forward = format_tx_hash(record.forward_tx_hash)
            elif record.forward_error:
                forward = "[red]failed[/red]"
            else:
                forward = "-"
            table.add_row(
                str(record.cycle),
                f"#{record.wallet_index} {format_address(record.wallet_address)}",
                record.direction.value,
                format_amount(record.amount_in, record.from_symbol),
                format_amount(record.amount_out, record.to_symbol),
                format_tx_hash(record.tx_hash),
                forward,
            )
        return table
