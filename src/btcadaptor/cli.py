"""
Command-line interface for the Bitcoin adaptor.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Any, TypeVar

import typer
from loguru import logger
from pydantic import ValidationError

from btcadaptor.adaptor import BitcoinAdaptor, calc_tx_hash, decode_raw_transaction
from btcadaptor.config import AdaptorConfig, NetworkType, RPCConfig
from btcadaptor.errors import AdaptorError

T = TypeVar("T")

app = typer.Typer(
    name="btc-adaptor",
    help="Bitcoin adaptor - balances, history and unsigned transfers via btcd",
    add_completion=False,
)


def setup_logging(level: str = "INFO") -> None:
    """Configure loguru logging."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
    )


def _json_default(obj: Any) -> Any:
    if isinstance(obj, bytes):
        return obj.hex()
    raise TypeError(f"Cannot serialize {type(obj).__name__}")


def emit(result: Any) -> None:
    """Print a result as JSON on stdout."""
    if dataclasses.is_dataclass(result) and not isinstance(result, type):
        result = dataclasses.asdict(result)
    elif isinstance(result, list):
        result = [dataclasses.asdict(item) for item in result]
    print(json.dumps(result, indent=2, default=_json_default))


def run(ctx: typer.Context, operation: Callable[[BitcoinAdaptor], Awaitable[T]]) -> T:
    """Run one adaptor operation, mapping adaptor errors to exit status 1."""
    config: AdaptorConfig = ctx.obj

    async def _run() -> T:
        async with BitcoinAdaptor(config) as adaptor:
            return await operation(adaptor)

    try:
        return asyncio.run(_run())
    except AdaptorError as e:
        logger.error(f"{type(e).__name__}: {e}")
        raise typer.Exit(1)


@app.callback()
def main_options(
    ctx: typer.Context,
    network: Annotated[str, typer.Option("--network", "-n", help="Bitcoin network")] = "mainnet",
    rpc_url: Annotated[
        str, typer.Option("--rpc-url", envvar="BTCD_RPC_URL", help="btcd RPC URL")
    ] = "",
    rpc_user: Annotated[
        str, typer.Option("--rpc-user", envvar="BTCD_RPC_USER", help="btcd RPC user")
    ] = "",
    rpc_password: Annotated[
        str, typer.Option("--rpc-password", envvar="BTCD_RPC_PASSWORD", help="btcd RPC password")
    ] = "",
    rpc_cert: Annotated[
        Path | None,
        typer.Option("--rpc-cert", envvar="BTCD_RPC_CERT", help="btcd TLS certificate"),
    ] = None,
    min_confirmations: Annotated[
        int, typer.Option("--min-conf", help="Confirmations before an output is spendable")
    ] = 1,
    log_level: Annotated[str, typer.Option("--log-level", "-l", help="Log level")] = "INFO",
) -> None:
    setup_logging(log_level)

    try:
        network_type = NetworkType(network)
    except ValueError:
        logger.error(f"Invalid network: {network}")
        raise typer.Exit(1)

    try:
        ctx.obj = AdaptorConfig(
            network=network_type,
            rpc=RPCConfig(url=rpc_url, user=rpc_user, password=rpc_password, cert_path=rpc_cert),
            min_confirmations=min_confirmations,
        )
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        raise typer.Exit(1)


@app.command()
def balance(
    ctx: typer.Context,
    address: Annotated[str, typer.Argument(help="Address to query")],
) -> None:
    """Show the spendable balance of an address in sats."""
    emit({"address": address, "balance": run(ctx, lambda a: a.get_account_balance(address))})


@app.command()
def utxos(
    ctx: typer.Context,
    address: Annotated[str, typer.Argument(help="Address to query")],
) -> None:
    """List spendable outputs of an address."""
    emit(run(ctx, lambda a: a.get_utxos(address)))


@app.command()
def history(
    ctx: typer.Context,
    address: Annotated[str, typer.Argument(help="Address to query")],
    count: Annotated[int, typer.Option("--count", "-c", help="Most recent N transactions")] = 50,
) -> None:
    """List recent transactions with their balance change."""
    emit(run(ctx, lambda a: a.list_transactions(address, count)))


@app.command()
def transfer(
    ctx: typer.Context,
    from_address: Annotated[str, typer.Argument(help="Paying address (receives change)")],
    to_address: Annotated[str, typer.Argument(help="Destination address")],
    amount: Annotated[int, typer.Argument(help="Amount in sats")],
    exclude: Annotated[
        str, typer.Option("--exclude", "-x", help="Hex consumed refs of pending transfers")
    ] = "",
) -> None:
    """Build an unsigned transfer transaction."""
    try:
        excluded = bytes.fromhex(exclude)
    except ValueError:
        logger.error("--exclude must be hex")
        raise typer.Exit(1)

    tx = run(
        ctx, lambda a: a.create_transfer_transaction(from_address, to_address, amount, excluded)
    )
    emit(
        {
            "txid": tx.txid,
            "raw": tx.raw,
            "consumed_refs": tx.consumed_refs,
            "outputs": [dataclasses.asdict(out) for out in tx.outputs],
        }
    )


@app.command()
def txid(
    raw_hex: Annotated[str, typer.Argument(help="Raw transaction hex")],
) -> None:
    """Compute the txid of a raw transaction."""
    try:
        emit({"txid": calc_tx_hash(bytes.fromhex(raw_hex))})
    except (ValueError, AdaptorError) as e:
        logger.error(f"Cannot decode transaction: {e}")
        raise typer.Exit(1)


@app.command()
def decode(
    ctx: typer.Context,
    raw_hex: Annotated[str, typer.Argument(help="Raw transaction hex")],
) -> None:
    """Decode a raw transaction."""
    try:
        config: AdaptorConfig = ctx.obj
        emit(decode_raw_transaction(bytes.fromhex(raw_hex), config.network))
    except (ValueError, AdaptorError) as e:
        logger.error(f"Cannot decode transaction: {e}")
        raise typer.Exit(1)


@app.command("transfer-info")
def transfer_info(
    ctx: typer.Context,
    tx_id: Annotated[str, typer.Argument(help="Transaction id")],
) -> None:
    """Show sender, destination, amount and fee of a transfer."""
    emit(run(ctx, lambda a: a.get_transfer_tx(tx_id)))


@app.command()
def block(
    ctx: typer.Context,
    block_hash: Annotated[str | None, typer.Option("--hash", help="Block hash")] = None,
    height: Annotated[int | None, typer.Option("--height", help="Block height")] = None,
) -> None:
    """Show block info (latest block if neither --hash nor --height is given)."""
    latest = block_hash is None and height is None
    emit(run(ctx, lambda a: a.get_block_info(block_hash, height, latest=latest)))


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
