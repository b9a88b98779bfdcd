"""
Command-line interface for inspecting the coins a wallet owns in raw blocks.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Annotated

import typer
from loguru import logger

from coinledger.account import MasterAccount
from coinledger.coins import Coins, LedgerConsistencyError
from coinledger.config import LedgerSettings, get_settings
from coinledger.models import Block
from coinledger.script import NETWORK_HRP, script_to_address
from coinledger.serialization import SerializationError

app = typer.Typer(
    name="coinledger",
    help="SPV wallet coin ledger",
    add_completion=False,
)


def setup_logging(level: str) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def load_master_account(
    settings: LedgerSettings, mnemonic: str | None, network: str | None
) -> MasterAccount:
    """Build the master account from --mnemonic or the COINLEDGER_MNEMONIC setting."""
    resolved_mnemonic = mnemonic or settings.mnemonic
    if not resolved_mnemonic:
        logger.error("Mnemonic required. Use --mnemonic or COINLEDGER_MNEMONIC")
        raise typer.Exit(1)

    resolved_network = network or settings.network
    if resolved_network not in NETWORK_HRP:
        logger.error(f"Invalid network: {resolved_network}")
        raise typer.Exit(1)

    return MasterAccount.from_mnemonic(
        resolved_mnemonic, settings.passphrase, network=resolved_network
    )


@app.command()
def addresses(
    account: Annotated[int, typer.Option("--account", "-a", help="Account number")] = 0,
    sub: Annotated[int, typer.Option("--sub", "-s", help="Sub-account (0 receive, 1 change)")] = 0,
    count: Annotated[int, typer.Option("--count", "-c", min=1, help="Number of addresses")] = 10,
    csv: Annotated[
        int | None, typer.Option("--csv", help="Relative timelock of the scripts in blocks")
    ] = None,
    mnemonic: Annotated[str | None, typer.Option("--mnemonic", help="BIP39 mnemonic")] = None,
    network: Annotated[str | None, typer.Option("--network", "-n", help="Bitcoin network")] = None,
    log_level: Annotated[str | None, typer.Option("--log-level", "-l", help="Log level")] = None,
) -> None:
    """List the watched addresses of an account."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)

    master = load_master_account(settings, mnemonic, network)
    acct = master.add_account(account, sub, look_ahead=count, csv=csv)

    for script, derivation in acct.get_scripts():
        address = script_to_address(script, master.network)
        typer.echo(f"{acct.path}/{derivation.kix}  {address}")


@app.command()
def scan(
    block_files: Annotated[
        list[Path], typer.Argument(help="Files with hex encoded blocks, in ascending height order")
    ],
    start_height: Annotated[
        int, typer.Option("--start-height", "-H", help="Height of the first block")
    ] = 0,
    accounts: Annotated[
        int, typer.Option("--accounts", help="Number of accounts to watch")
    ] = 1,
    select: Annotated[
        int | None, typer.Option("--select", help="Select confirmed coins for this amount")
    ] = None,
    mnemonic: Annotated[str | None, typer.Option("--mnemonic", help="BIP39 mnemonic")] = None,
    network: Annotated[str | None, typer.Option("--network", "-n", help="Bitcoin network")] = None,
    log_level: Annotated[str | None, typer.Option("--log-level", "-l", help="Log level")] = None,
) -> None:
    """Scan raw blocks for owned coins and print balances."""
    settings = get_settings()
    setup_logging(log_level or settings.log_level)

    master = load_master_account(settings, mnemonic, network)
    for account in range(accounts):
        for sub in (0, 1):
            master.add_account(account, sub, look_ahead=settings.look_ahead)

    coins = Coins()
    heights: dict[str, int] = {}
    height = start_height
    for block_file in block_files:
        try:
            block = Block.from_hex(block_file.read_text())
        except OSError as e:
            logger.error(f"Cannot read {block_file}: {e}")
            raise typer.Exit(1)
        except SerializationError as e:
            logger.error(f"Invalid block in {block_file}: {e}")
            raise typer.Exit(1)

        heights[block.block_hash] = height
        coins.process(master, block)
        height += 1

    tip_height = height - 1
    typer.echo(f"Scanned {len(block_files)} blocks up to height {tip_height}")
    for point, coin in sorted(coins.confirmed.items()):
        typer.echo(f"  confirmed    {point}  {coin.output.value:>15,} sats")
    for point, coin in sorted(coins.unconfirmed.items()):
        typer.echo(f"  unconfirmed  {point}  {coin.output.value:>15,} sats")
    typer.echo(f"Confirmed balance: {coins.confirmed_balance():,} sats")
    typer.echo(f"Unconfirmed balance: {coins.unconfirmed_balance():,} sats")

    if select is None:
        return

    try:
        selection = coins.get_confirmed_coins(select, tip_height, heights.get)
    except LedgerConsistencyError as e:
        logger.error(f"Ledger inconsistent: {e}")
        raise typer.Exit(1)

    total = sum(selected.coin.output.value for selected in selection)
    typer.echo(f"Selected {len(selection)} coins for {select:,} sats: {total:,} sats")
    for selected in selection:
        typer.echo(f"  {selected.outpoint}  {selected.coin.output.value:>15,} sats")
    if total < select:
        logger.warning(f"Insufficient confirmed funds: need {select}, have {total}")
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
