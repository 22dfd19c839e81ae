#!/usr/bin/env python3
"""
SwapBot CLI - Command Line Interface
====================================

Provides commands for:
- Storing swap wallet keys encrypted under a password
- Deriving wallets from a recovery phrase
- Inspecting and clearing the key vault
- Checking the network gas price and the token list
- Showing token balances of the stored wallets
- Running a multi-wallet swap schedule

Usage:
    swapbot init
    swapbot store
    swapbot derive --count 20
    swapbot show
    swapbot gas
    swapbot balances --in USDC --out WAVAX
    swapbot run --in USDC --out WAVAX --amount 100 --pairs 2 --interval 60
"""

import sys
import asyncio
import argparse
import getpass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich import box

from . import __version__
from .config import ConfigManager, NetworkConfig, SwapConfig, DEFAULT_CONFIG
from .derivation import derive_wallets, merge_secrets, add_secret, address_of
from .dex_router import DexRouter
from .executor import SwapExecutor
from .gas import FeeGuard
from .registry import TokenRegistry, enabled_treasury_wallets
from .scheduler import SwapScheduler, RunStatus
from .storage import FileStore
from .vault import KeyVault
from .utils import (
    setup_logging,
    format_address,
    format_amount,
    format_duration,
    from_base_units,
    SwapBotError,
    ConfigurationError,
)

console = Console()


def print_banner():
    """Print the CLI banner."""
    banner = f"""
    SwapBot {__version__}
    ═══════════════════════════════════
    Multi-wallet DEX swap agent
    """
    console.print(Panel(banner, style="bold cyan", box=box.DOUBLE))


def get_password(prompt: str = "Enter vault password: ", confirm: bool = False) -> str:
    """Securely get password from user."""
    console.print(f"[yellow]{prompt}[/yellow]")
    password = getpass.getpass("> ")

    if confirm:
        console.print("[yellow]Confirm password:[/yellow]")
        if getpass.getpass("> ") != password:
            raise ConfigurationError("Passwords don't match")

    return password


def read_private_keys() -> List[str]:
    """Prompt for private keys one per line until an empty line."""
    console.print("[yellow]Enter private keys (0x...), one per line. Empty line to finish:[/yellow]")
    keys: List[str] = []
    while True:
        key = getpass.getpass("> ").strip()
        if not key:
            break
        keys = add_secret(keys, key)
        console.print(f"[green]✓ Added {format_address(address_of(key))}[/green]")
    return keys


def read_phrase() -> str:
    console.print("[yellow]Enter recovery phrase (12 or 24 words):[/yellow]")
    return getpass.getpass("> ")


def load_network_config(args) -> NetworkConfig:
    config = ConfigManager(Path(args.config)).load_config()
    if args.key_file:
        config.key_file = args.key_file
    if args.log_level:
        config.log_level = args.log_level
    if args.log_file:
        config.log_file = args.log_file
    return config


def open_vault(config: NetworkConfig) -> KeyVault:
    return KeyVault(FileStore(config.key_file), iterations=config.kdf_iterations)


def load_registry(config: NetworkConfig) -> TokenRegistry:
    if config.tokens_file:
        return TokenRegistry.from_yaml(config.tokens_file)
    return TokenRegistry()


def print_wallet_table(secrets: List[str], reveal: bool = False):
    table = Table(title="Swap Wallets", box=box.ROUNDED)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Address", style="dim")
    if reveal:
        table.add_column("Private Key", style="red")

    for index, secret in enumerate(secrets):
        row = [str(index), address_of(secret)]
        if reveal:
            row.append(secret)
        table.add_row(*row)

    console.print(table)


def init_command(args, config: NetworkConfig) -> int:
    """Handle init command - write a default config file."""
    path = Path(args.config)
    if path.exists() and not args.force:
        console.print(f"[yellow]{path} already exists (use --force to overwrite)[/yellow]")
        return 1

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG + "\n")
    path.chmod(0o600)
    console.print(f"[green]✓ Default configuration written to {path}[/green]")
    return 0


def store_command(args, config: NetworkConfig) -> int:
    """Handle store command - encrypt keys, replacing the vault contents."""
    print_banner()
    vault = open_vault(config)

    secrets = read_private_keys()
    if args.phrase:
        derived = derive_wallets(read_phrase(), args.count or config.derivation_count)
        secrets, added = merge_secrets(secrets, derived)
        console.print(f"[green]✓ Derived {added} new wallet(s) from phrase[/green]")

    if not secrets:
        console.print("[red]No keys entered[/red]")
        return 1

    if vault.is_configured:
        console.print(f"[yellow]Replacing {vault.stored_count} stored key(s)[/yellow]")

    password = get_password("Create encryption password: ", confirm=True)
    vault.encrypt_and_store(secrets, password)

    console.print(f"[green]✓ {len(secrets)} key(s) encrypted to {config.key_file}[/green]")
    return 0


def derive_command(args, config: NetworkConfig) -> int:
    """Handle derive command - add phrase-derived wallets to the vault."""
    print_banner()
    vault = open_vault(config)

    existing: List[str] = []
    if vault.is_configured:
        password = get_password()
        existing = vault.verify_and_decrypt(password)
    else:
        password = None

    count = args.count or config.derivation_count
    derived = derive_wallets(read_phrase(), count)
    merged, added = merge_secrets(existing, derived)

    if added == 0:
        console.print("[yellow]All derived wallets are already stored[/yellow]")
        return 0

    if password is None:
        password = get_password("Create encryption password: ", confirm=True)
    vault.encrypt_and_store(merged, password)

    console.print(f"[green]✓ Added {added} wallet(s), {len(merged)} stored in total[/green]")
    return 0


def show_command(args, config: NetworkConfig) -> int:
    """Handle show command - list stored wallet addresses."""
    vault = open_vault(config)
    if not vault.is_configured:
        console.print("[yellow]No keys stored. Run 'store' first.[/yellow]")
        return 1

    secrets = vault.verify_and_decrypt(get_password())
    if args.reveal:
        console.print("[bold red]Private keys are shown below. Never share them.[/bold red]")
    print_wallet_table(secrets, reveal=args.reveal)
    return 0


def clear_command(args, config: NetworkConfig) -> int:
    """Handle clear command - discard the stored keys."""
    vault = open_vault(config)
    if not args.yes:
        console.print("[bold red]This permanently deletes all stored keys.[/bold red]")
        if input("Type 'yes' to confirm: ").strip().lower() != "yes":
            console.print("[yellow]Aborted[/yellow]")
            return 1

    vault.clear()
    console.print("[green]✓ Stored keys cleared[/green]")
    return 0


def tokens_command(args, config: NetworkConfig) -> int:
    """Handle tokens command - list tradable tokens and treasury wallets."""
    registry = load_registry(config)

    table = Table(title="Tokens", box=box.ROUNDED)
    table.add_column("Symbol", style="cyan")
    table.add_column("Name")
    table.add_column("Address", style="dim")
    table.add_column("Decimals", justify="right")
    for token in registry.enabled():
        table.add_row(token.symbol, token.name, token.address,
                      str(token.decimals) if token.decimals is not None else "-")
    console.print(table)

    wallets = Table(title="Treasury Wallets", box=box.ROUNDED)
    wallets.add_column("Label", style="cyan")
    wallets.add_column("Address", style="dim")
    for wallet in enabled_treasury_wallets():
        wallets.add_row(wallet.label, wallet.address)
    console.print(wallets)
    return 0


def gas_command(args, config: NetworkConfig) -> int:
    """Handle gas command - sample the network gas price once."""
    dex = DexRouter.from_config(config)
    guard = FeeGuard(dex, ceiling_gwei=config.max_gas_price_gwei)
    observation = asyncio.run(guard.refresh())

    if not observation.is_known:
        console.print("[red]Could not read gas price[/red]")
        return 1

    status = "[red]too high[/red]" if observation.is_above_threshold else "[green]ok[/green]"
    console.print(Panel(
        f"Gas price: {observation.price_gwei:.4f} gwei\n"
        f"Ceiling: {config.max_gas_price_gwei} gwei\n"
        f"Status: {status}",
        title="Network Fees",
        border_style="cyan"
    ))
    return 0


async def fetch_balances(dex: DexRouter, tokens, addresses: List[str]) -> List[List[Decimal]]:
    """Balances of every token for every address, using on-chain decimals."""
    decimals = [await dex.decimals(token.address) for token in tokens]
    rows = []
    for address in addresses:
        row = []
        for token, token_decimals in zip(tokens, decimals):
            raw = await dex.balance_of(token.address, address)
            row.append(from_base_units(raw, token_decimals))
        rows.append(row)
    return rows


def balances_command(args, config: NetworkConfig) -> int:
    """Handle balances command - show token balances of every stored wallet."""
    registry = load_registry(config)
    tokens = [registry.get(args.input_token), registry.get(args.output_token)]

    vault = open_vault(config)
    addresses = [address_of(s) for s in vault.verify_and_decrypt(get_password())]

    dex = DexRouter.from_config(config)
    balances = asyncio.run(fetch_balances(dex, tokens, addresses))

    table = Table(title="Wallet Balances", box=box.ROUNDED)
    table.add_column("#", style="cyan", width=4)
    table.add_column("Address", style="dim")
    for token in tokens:
        table.add_column(token.symbol, justify="right")

    for index, (address, row) in enumerate(zip(addresses, balances)):
        table.add_row(str(index), format_address(address), *[format_amount(b) for b in row])

    totals = [sum(column, Decimal(0)) for column in zip(*balances)]
    if totals:
        table.add_section()
        table.add_row("", "Total", *[format_amount(t) for t in totals], style="bold")

    console.print(table)
    return 0


def parse_amount(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"Invalid amount: {value}")


async def run_schedule(scheduler: SwapScheduler, guard: FeeGuard, swap_config: SwapConfig,
                       secrets: List[str]):
    await guard.start()
    try:
        scheduler.start(swap_config, secrets)
        return await scheduler.wait()
    finally:
        scheduler.stop()
        await guard.stop()


def run_command(args, config: NetworkConfig) -> int:
    """Handle run command - run a swap schedule until done or Ctrl+C."""
    print_banner()

    registry = load_registry(config)
    swap_config = SwapConfig(
        input_token=registry.get(args.input_token),
        output_token=registry.get(args.output_token),
        per_cycle_amount=args.amount,
        total_cycle_pairs=args.pairs,
        interval_seconds=args.interval,
        forward_target=args.forward_to,
    ).validate()

    vault = open_vault(config)
    secrets = vault.verify_and_decrypt(get_password())
    # Forward target vs rotation needs the decrypted addresses
    swap_config = swap_config.validate([address_of(s) for s in secrets])
    console.print(f"[green]✓ Decrypted {len(secrets)} wallet(s)[/green]")

    dex = DexRouter.from_config(config)
    guard = FeeGuard(dex, ceiling_gwei=config.max_gas_price_gwei, poll_interval=config.gas_poll_seconds)
    executor = SwapExecutor(dex, slippage_percent=config.slippage_percent,
                            deadline_seconds=config.deadline_seconds)
    scheduler = SwapScheduler(executor, guard)

    mode = (f"forward to {format_address(swap_config.forward_target)}"
            if swap_config.forwarding else "ping-pong")
    console.print(Panel(
        f"Pair: {swap_config.input_token.symbol} -> {swap_config.output_token.symbol}\n"
        f"Amount per cycle: {format_amount(swap_config.per_cycle_amount, swap_config.input_token.symbol)}\n"
        f"Cycles: {swap_config.total_cycles}\n"
        f"Interval: {format_duration(swap_config.interval_seconds)}\n"
        f"Mode: {mode}",
        title="Run",
        border_style="cyan"
    ))
    console.print("[dim]Press Ctrl+C to stop\n[/dim]")

    try:
        state = asyncio.run(run_schedule(scheduler, guard, swap_config, secrets))
    except KeyboardInterrupt:
        scheduler.stop()
        console.print("\n[yellow]Run stopped by user[/yellow]")
        state = scheduler.state

    console.print(scheduler.get_history_table())
    console.print(
        f"Status: {state.status.value}  Cycles: {state.executed_count}/{swap_config.total_cycles}  "
        f"Fee delays: {state.fee_delays}"
    )
    if state.status == RunStatus.FAILED:
        console.print(f"[red]{state.error}[/red]")
        return 1
    return 0


COMMANDS = {
    'init': init_command,
    'store': store_command,
    'derive': derive_command,
    'show': show_command,
    'clear': clear_command,
    'tokens': tokens_command,
    'gas': gas_command,
    'balances': balances_command,
    'run': run_command,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="swapbot",
        description="Automated multi-wallet DEX swap agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Encrypt a list of keys
  swapbot store

  # Add 20 wallets derived from a recovery phrase
  swapbot derive --count 20

  # Swap 100 USDC to WAVAX and back, twice, every minute
  swapbot run --in USDC --out WAVAX --amount 100 --pairs 2 --interval 60
        """
    )

    # Global options
    parser.add_argument('--config', default='./swapbot_config.yaml', help='Path to network config')
    parser.add_argument('--key-file', help='Path to encrypted key storage (overrides config)')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Log level (overrides config)')
    parser.add_argument('--log-file', help='Log file path (overrides config)')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    init_parser = subparsers.add_parser('init', help='Write a default config file')
    init_parser.add_argument('--force', action='store_true', help='Overwrite an existing file')

    store_parser = subparsers.add_parser('store', help='Encrypt and store private keys')
    store_parser.add_argument('--phrase', action='store_true', help='Also derive wallets from a recovery phrase')
    store_parser.add_argument('--count', type=int, help='Number of wallets to derive')

    derive_parser = subparsers.add_parser('derive', help='Add wallets derived from a recovery phrase')
    derive_parser.add_argument('--count', type=int, help='Number of wallets to derive')

    show_parser = subparsers.add_parser('show', help='List stored wallets')
    show_parser.add_argument('--reveal', action='store_true', help='Also print private keys')

    clear_parser = subparsers.add_parser('clear', help='Delete all stored keys')
    clear_parser.add_argument('--yes', action='store_true', help='Skip confirmation')

    subparsers.add_parser('tokens', help='List tokens and treasury wallets')
    subparsers.add_parser('gas', help='Show current gas price')

    balances_parser = subparsers.add_parser('balances', help='Show token balances of the stored wallets')
    balances_parser.add_argument('--in', dest='input_token', required=True, help='First token symbol or address')
    balances_parser.add_argument('--out', dest='output_token', required=True, help='Second token symbol or address')

    run_parser = subparsers.add_parser('run', help='Run a swap schedule')
    run_parser.add_argument('--in', dest='input_token', required=True, help='Input token symbol or address')
    run_parser.add_argument('--out', dest='output_token', required=True, help='Output token symbol or address')
    run_parser.add_argument('--amount', type=parse_amount, required=True, help='Input amount per cycle')
    run_parser.add_argument('--pairs', type=int, required=True, help='Number of cycle pairs')
    run_parser.add_argument('--interval', type=float, required=True, help='Seconds between cycles')
    run_parser.add_argument('--forward-to', help='Treasury address that receives the output')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        return 1

    config = load_network_config(args)
    setup_logging(config.log_level, config.log_file)

    try:
        return COMMANDS[args.command](args, config)
    except SwapBotError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 1


if __name__ == '__main__':
    sys.exit(main())
