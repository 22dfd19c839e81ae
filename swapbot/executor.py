"""
Swap Executor
=============
Runs one swap for one wallet against the router:

    balance check -> allowance/approve -> quote -> swap -> verify -> forward

Amounts cross this boundary as Decimal token amounts and are converted to
raw base units exactly once, using the token's on-chain decimals. The
amount received is always the measured balance increase, never the quote.
"""

import time
from decimal import Decimal
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from eth_account import Account

from .dex_router import DexRouter, MAX_UINT256
from .utils import (
    logger,
    format_address,
    format_amount,
    format_tx_hash,
    from_base_units,
    to_base_units,
    sanitize_error_message,
    SwapError,
    InsufficientBalanceError,
    ApprovalError,
    QuoteError,
    TransactionError,
    NoOutputDetectedError,
    SwapExecutionError,
    ForwardError,
)


@dataclass(frozen=True)
class QuoteResult:
    """Router quote in raw output units."""
    expected_output: int
    minimum_output: int


@dataclass
class ForwardResult:
    """Outcome of the post-swap transfer to the forward target."""
    success: bool
    target: str
    tx_hash: Optional[str] = None
    error: Optional[ForwardError] = None


@dataclass
class SwapReceipt:
    """Confirmed swap, with the output measured from balances."""
    wallet_address: str
    amount_in: Decimal
    amount_received: Decimal
    amount_received_raw: int
    tx_hash: str
    quote: QuoteResult
    forward: Optional[ForwardResult] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())


@dataclass
class SwapResult:
    """Either a receipt or the reason the swap failed."""
    success: bool
    receipt: Optional[SwapReceipt] = None
    error: Optional[str] = None
    error_type: Optional[str] = None

    @classmethod
    def ok(cls, receipt: SwapReceipt) -> "SwapResult":
        return cls(success=True, receipt=receipt)

    @classmethod
    def failed(cls, error: Exception) -> "SwapResult":
        return cls(
            success=False,
            error=sanitize_error_message(str(error)),
            error_type=type(error).__name__,
        )


class SwapExecutor:
    """
    Executes single swaps on a Uniswap-V2 style router.

    The signing account is built from the secret for the duration of one
    call only.
    """

    def __init__(
        self,
        dex: DexRouter,
        slippage_percent: float = 5.0,
        deadline_seconds: int = 1200,
        clock: Callable[[], float] = time.time,
    ):
        if not 0 <= slippage_percent < 100:
            raise ValueError(f"Slippage must be in [0, 100), got {slippage_percent}")
        self.dex = dex
        self.slippage_percent = slippage_percent
        self.deadline_seconds = deadline_seconds
        self.clock = clock

    def _minimum_output(self, expected_output: int) -> int:
        keep_bps = int(round((100 - self.slippage_percent) * 100))
        return expected_output * keep_bps // 10_000

    async def quote(self, from_token: str, to_token: str, amount_in: int) -> QuoteResult:
        """
        Quote ``amount_in`` raw units of ``from_token``.

        Raises:
            QuoteError: router call failed or quoted zero output
        """
        try:
            expected = await self.dex.quote_output([from_token, to_token], amount_in)
        except Exception as e:
            raise QuoteError(f"Quote failed: {e}") from e

        if expected <= 0:
            raise QuoteError("Router quoted zero output")

        return QuoteResult(expected_output=expected, minimum_output=self._minimum_output(expected))

    async def _ensure_allowance(self, account, token: str, amount_in: int):
        spender = self.dex.router_address
        try:
            current = await self.dex.allowance(token, account.address, spender)
            if current >= amount_in:
                return
            logger.info(f"Approving router for {format_address(token)} from {format_address(account.address)}")
            await self.dex.approve(account, token, spender, MAX_UINT256)
        except Exception as e:
            raise ApprovalError(f"Approval failed: {e}") from e

    async def _forward(self, account, token: str, target: str, amount_raw: int) -> ForwardResult:
        try:
            tx_hash = await self.dex.transfer(account, token, target, amount_raw)
        except Exception as e:
            error = ForwardError(f"Forward to {format_address(target)} failed: {sanitize_error_message(str(e))}")
            logger.error(str(error))
            return ForwardResult(success=False, target=target, error=error)

        logger.info(f"Forwarded output to {format_address(target)}: {format_tx_hash(tx_hash)}")
        return ForwardResult(success=True, target=target, tx_hash=tx_hash)

    async def execute_swap(
        self,
        secret: str,
        from_token: str,
        to_token: str,
        amount: Decimal,
        forward_to: Optional[str] = None,
    ) -> SwapResult:
        """
        Swap ``amount`` of ``from_token`` into ``to_token`` from the wallet
        controlled by ``secret``.

        Args:
            secret: Private key of the swapping wallet
            from_token: Input token address
            to_token: Output token address
            amount: Input amount in token units
            forward_to: If set, the received output is transferred here

        Returns:
            SwapResult; a failed forward does not fail the swap
        """
        try:
            return await self._execute(secret, from_token, to_token, amount, forward_to)
        except SwapError as e:
            logger.error(f"Swap failed: {sanitize_error_message(str(e))}")
            return SwapResult.failed(e)
        except Exception as e:
            logger.exception("Unexpected swap failure")
            return SwapResult.failed(SwapExecutionError(f"Unexpected error: {e}"))

    async def _execute(self, secret, from_token, to_token, amount, forward_to) -> SwapResult:
        account = Account.from_key(secret)
        wallet = account.address
        amount = Decimal(str(amount))

        in_decimals = await self.dex.decimals(from_token)
        out_decimals = await self.dex.decimals(to_token)
        amount_in = to_base_units(amount, in_decimals)
        if amount_in <= 0:
            raise InsufficientBalanceError(f"Amount {amount} rounds to zero base units")

        # 1. Balance
        balance = await self.dex.balance_of(from_token, wallet)
        if balance < amount_in:
            raise InsufficientBalanceError(
                f"Wallet {format_address(wallet)} holds "
                f"{format_amount(from_base_units(balance, in_decimals))}, "
                f"needs {format_amount(amount)}"
            )

        # 2. Allowance
        await self._ensure_allowance(account, from_token, amount_in)

        # 3. Quote
        quote = await self.quote(from_token, to_token, amount_in)

        # 4. Output balance before
        before = await self.dex.balance_of(to_token, wallet)

        # 5. Swap
        deadline = int(self.clock()) + self.deadline_seconds
        logger.info(
            f"Swapping {format_amount(amount)} from {format_address(wallet)} "
            f"(min out {format_amount(from_base_units(quote.minimum_output, out_decimals))})"
        )
        try:
            tx_hash = await self.dex.swap_exact_input(
                account, amount_in, quote.minimum_output, [from_token, to_token], wallet, deadline
            )
        except TransactionError:
            raise
        except Exception as e:
            raise TransactionError(f"Swap transaction failed: {e}") from e

        # 6. Verify by balance delta
        after = await self.dex.balance_of(to_token, wallet)
        received_raw = after - before
        if received_raw <= 0:
            raise NoOutputDetectedError(
                f"Swap {format_tx_hash(tx_hash)} confirmed but no output was received"
            )

        received = from_base_units(received_raw, out_decimals)
        logger.info(f"Swap confirmed {format_tx_hash(tx_hash)}: received {format_amount(received)}")

        # 7. Forward
        forward = None
        if forward_to:
            forward = await self._forward(account, to_token, forward_to, received_raw)

        return SwapResult.ok(SwapReceipt(
            wallet_address=wallet,
            amount_in=amount,
            amount_received=received,
            amount_received_raw=received_raw,
            tx_hash=tx_hash,
            quote=quote,
            forward=forward,
        ))
