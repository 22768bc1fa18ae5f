"""
Command-line interface for the Ark client.
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from arkcore.errors import ArkError
from loguru import logger

from arkclient.client import ArkClient
from arkclient.config import Settings, get_settings
from arkclient.settlement import SettlementOutcome

T = TypeVar("T")

app = typer.Typer(
    name="ark-client",
    help="Ark client - settle VTXOs and boarding outputs in coordinator rounds",
    add_completion=False,
)

ServerOption = Annotated[
    str | None, typer.Option("--server-url", "-s", help="Coordinator URL (ARK_SERVER_URL)")
]
EsploraOption = Annotated[
    str | None, typer.Option("--esplora-url", help="Esplora API URL (ARK_ESPLORA_URL)")
]
SecretKeyOption = Annotated[
    str | None, typer.Option("--secret-key", help="Wallet secret key (hex)")
]
SecretKeyFileOption = Annotated[
    Path | None, typer.Option("--secret-key-file", "-f", help="File holding the hex secret key")
]
LogLevelOption = Annotated[
    str | None, typer.Option("--log-level", "-l", help="Log level (ARK_LOG_LEVEL)")
]


def setup_logging(level: str) -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def load_secret_key(secret_key: str | None, secret_key_file: Path | None) -> str:
    """
    Load the wallet secret key.

    Priority:
    1. --secret-key argument
    2. --secret-key-file argument
    3. ARK_SECRET_KEY environment variable

    Raises:
        ValueError: If no secret key source is available
    """
    if secret_key:
        return secret_key.strip()

    if secret_key_file:
        if not secret_key_file.exists():
            raise ValueError(f"Secret key file not found: {secret_key_file}")
        return secret_key_file.read_text().strip()

    env_secret = os.environ.get("ARK_SECRET_KEY")
    if env_secret:
        return env_secret.strip()

    raise ValueError("Secret key required. Use --secret-key, --secret-key-file, or ARK_SECRET_KEY")


def _build_settings(
    server_url: str | None, esplora_url: str | None, log_level: str | None
) -> Settings:
    overrides = {
        key: value
        for key, value in (
            ("server_url", server_url),
            ("esplora_url", esplora_url),
            ("log_level", log_level),
        )
        if value is not None
    }
    settings = get_settings(**overrides)
    setup_logging(settings.log_level)
    return settings


def _run(settings: Settings, action: Callable[[ArkClient], Awaitable[T]]) -> T:
    async def _main() -> T:
        client = ArkClient(settings)
        try:
            await client.connect()
            return await action(client)
        finally:
            await client.close()

    try:
        return asyncio.run(_main())
    except ArkError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


def _secret_or_exit(secret_key: str | None, secret_key_file: Path | None) -> str:
    try:
        return load_secret_key(secret_key, secret_key_file)
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(1) from e


@app.command()
def info(
    server_url: ServerOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the coordinator's parameters."""
    settings = _build_settings(server_url, None, log_level)

    async def _info(client: ArkClient) -> None:
        server_info = client.server_info
        if server_info is None:
            raise ArkError("Not connected to a coordinator")
        print(f"Network:               {server_info.network.value}")
        print(f"Server pubkey:         {server_info.pubkey}")
        print(f"Dust:                  {server_info.dust:,} sats")
        print(f"VTXO tree expiry:      {server_info.vtxo_tree_expiry}s")
        print(f"Unilateral exit delay: {server_info.unilateral_exit_delay}s")
        print(f"Boarding exit delay:   {server_info.boarding_exit_delay}s")
        print(f"Round interval:        {server_info.round_interval}s")
        print(f"Forfeit address:       {server_info.forfeit_address}")

    _run(settings, _info)


@app.command()
def address(
    server_url: ServerOption = None,
    secret_key: SecretKeyOption = None,
    secret_key_file: SecretKeyFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show the wallet's Ark address and boarding address."""
    settings = _build_settings(server_url, None, log_level)
    secret = _secret_or_exit(secret_key, secret_key_file)

    async def _address(client: ArkClient) -> None:
        wallet = await client.get_wallet(await client.create_wallet(secret))
        print(f"Offchain address: {wallet.offchain_address()}")
        print(f"Boarding address: {wallet.boarding_address()}")

    _run(settings, _address)


@app.command()
def balance(
    server_url: ServerOption = None,
    esplora_url: EsploraOption = None,
    secret_key: SecretKeyOption = None,
    secret_key_file: SecretKeyFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Show offchain and boarding balances."""
    settings = _build_settings(server_url, esplora_url, log_level)
    secret = _secret_or_exit(secret_key, secret_key_file)

    async def _balance(client: ArkClient) -> None:
        wallet_id = await client.create_wallet(secret)
        result = await client.get_balance(wallet_id)
        print(f"\nOffchain spendable: {result.offchain_spendable:>15,} sats")
        print(f"Offchain expired:   {result.offchain_expired:>15,} sats")
        print(f"Boarding spendable: {result.boarding_spendable:>15,} sats")
        print(f"Boarding pending:   {result.boarding_pending:>15,} sats")
        print(f"Boarding expired:   {result.boarding_expired:>15,} sats")
        print(f"\nTotal: {result.total:,} sats ({result.total / 1e8:.8f} BTC)")

    _run(settings, _balance)


@app.command()
def settle(
    to_address: Annotated[
        str | None,
        typer.Option("--to", "-t", help="Destination Ark address (default: own address)"),
    ] = None,
    amount: Annotated[
        int | None, typer.Option("--amount", "-a", help="Amount in sats (default: everything)")
    ] = None,
    server_url: ServerOption = None,
    esplora_url: EsploraOption = None,
    secret_key: SecretKeyOption = None,
    secret_key_file: SecretKeyFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Join the next round with the wallet's VTXOs and boarding outputs."""
    settings = _build_settings(server_url, esplora_url, log_level)
    secret = _secret_or_exit(secret_key, secret_key_file)

    async def _settle(client: ArkClient) -> None:
        wallet_id = await client.create_wallet(secret)
        result = await client.settle(wallet_id, to_address=to_address, amount=amount)
        if result.outcome == SettlementOutcome.NOTHING_TO_SETTLE:
            print("Nothing to settle")
        else:
            print(f"Round {result.round_id} finalized: {result.round_txid}")

    _run(settings, _settle)


@app.command()
def send(
    to_address: Annotated[str, typer.Argument(help="Destination Ark address")],
    amount: Annotated[int, typer.Argument(help="Amount in sats")],
    server_url: ServerOption = None,
    esplora_url: EsploraOption = None,
    secret_key: SecretKeyOption = None,
    secret_key_file: SecretKeyFileOption = None,
    log_level: LogLevelOption = None,
) -> None:
    """Send sats to an Ark address off-chain, without waiting for a round."""
    settings = _build_settings(server_url, esplora_url, log_level)
    secret = _secret_or_exit(secret_key, secret_key_file)

    async def _send(client: ArkClient) -> None:
        wallet_id = await client.create_wallet(secret)
        txid = await client.send(wallet_id, to_address, amount)
        print(f"Sent {amount:,} sats to {to_address}: {txid}")

    _run(settings, _send)


def main() -> None:
    """Entry point."""
    app()


if __name__ == "__main__":
    main()
