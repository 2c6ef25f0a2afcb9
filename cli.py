#!/usr/bin/env python3
"""
Settlement Ledger CLI - run and operate the ledger
"""
import asyncio
import json
import signal
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ledger.engine import TradeMessage, encode_event, engine_event_channels
from ledger.models import Asset, Balance, Market, OrderSide, OrderType, ReferenceData
from ledger.service import LedgerService, create_ledger_service
from shared.config.settings import settings
from shared.utils.logging import configure_logging


app = typer.Typer(help="Settlement Ledger CLI - balances, orders and trade settlement")
console = Console()


def _load_reference(path: Optional[Path]) -> Optional[ReferenceData]:
    if path is None:
        return None
    return ReferenceData.model_validate_json(path.read_text())


def _print_balances(title: str, balances: List[Balance]) -> None:
    table = Table(title=title)
    table.add_column("User", style="cyan")
    table.add_column("Asset", style="magenta")
    table.add_column("Available", justify="right", style="green")
    table.add_column("Locked", justify="right", style="yellow")

    for balance in balances:
        table.add_row(balance.user_id, balance.asset, str(balance.available), str(balance.locked))

    console.print(table)


@app.command()
def info():
    """Display system information"""
    ledger_config = settings.ledger
    console.print(Panel.fit(
        f"[bold blue]{settings.app_name}[/bold blue] v{settings.app_version}\n"
        f"Environment: {settings.environment}\n"
        f"Store: {ledger_config.store_backend} | Queue: {ledger_config.queue_backend} | "
        f"Bus: {ledger_config.bus_backend}\n"
        f"Cancellation mode: {ledger_config.cancellation_mode}\n"
        f"Fee account: {ledger_config.fee_account_id}\n"
        f"Redis: {settings.redis.redis_url}\n"
        f"Database: {settings.database.async_url if ledger_config.store_backend == 'sql' else '-'}",
        title="System Information"
    ))


@app.command()
def run(
    reference: Optional[Path] = typer.Option(
        None, help="JSON file with {'assets': [...], 'markets': [...]}"
    )
):
    """Run the ledger: consume engine events until interrupted"""
    configure_logging(settings.log_level, settings.log_file)

    async def main():
        service = create_ledger_service(settings)
        await service.connect()

        data = _load_reference(reference)
        if data:
            await service.load_reference_data(data)

        stop_requested = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_requested.set)

        await service.start()
        console.print(f"[green]✓ {settings.app_name} running, Ctrl+C to stop[/green]")

        try:
            await stop_requested.wait()
        finally:
            console.print("[yellow]Stopping, finishing in-flight messages...[/yellow]")
            await service.stop()

    asyncio.run(main())


@app.command()
def dead_letters(
    market: str = typer.Argument(..., help="Market symbol (e.g., BTC_USDT)"),
    limit: int = typer.Option(20, help="Maximum messages to show")
):
    """List dead-lettered engine events of a market"""
    async def main():
        service = create_ledger_service(settings)
        await service.connect()
        try:
            messages = await service.list_dead_letters(market, limit=limit)
        finally:
            await service.queue.close()
            await service.store.close()

        channel = engine_event_channels(market).dead_letter
        if not messages:
            console.print(f"[green]No dead letters on {channel}[/green]")
            return

        table = Table(title=f"Dead letters: {channel}")
        table.add_column("#", justify="right", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Message", style="white")

        for index, body in enumerate(messages):
            try:
                event_type = json.loads(body).get("type", "?")
            except (ValueError, AttributeError):
                event_type = "unparseable"
            table.add_row(str(index), event_type, body)

        console.print(table)

    asyncio.run(main())


@app.command()
def replay_dead_letter(
    market: str = typer.Argument(..., help="Market symbol"),
    count: int = typer.Option(1, help="Number of messages to replay, oldest first")
):
    """Move dead-lettered engine events back onto the incoming queue"""
    async def main():
        service = create_ledger_service(settings)
        await service.connect()
        try:
            moved = await service.replay_dead_letters(market, count=count)
        finally:
            await service.queue.close()
            await service.store.close()

        console.print(f"[green]✓ Replayed {moved} message(s) on {market}[/green]")

    asyncio.run(main())


@app.command()
def demo(
    price: str = typer.Option("90", help="Trade price for the 100-limit buy"),
    fee_bps: int = typer.Option(0, help="Taker fee in basis points")
):
    """Walk an order through placement and settlement in-process"""
    async def main():
        service: LedgerService = create_ledger_service(settings.model_copy(update={
            "ledger": settings.ledger.model_copy(update={"queue_backend": "memory", "bus_backend": "memory"})
        }))

        await service.load_reference_data(ReferenceData(
            assets=[Asset(symbol="BTC", decimals=0), Asset(symbol="USDT", decimals=0)],
            markets=[Market(
                symbol="BTC_USDT", base_asset="BTC", quote_asset="USDT",
                min_price=Decimal("1"), tick_size=Decimal("1"),
                min_quantity=Decimal("1"), step_size=Decimal("1"),
                taker_fee_bps=fee_bps,
            )],
        ))
        await service.deposit("alice", "USDT", Decimal("1000"))
        await service.deposit("bob", "BTC", Decimal("5"))

        console.print("[yellow]1. alice buys 5 BTC @ 100, bob sells 5 BTC @ limit[/yellow]")
        buy = await service.orders.submit_order(
            "alice", "BTC_USDT", OrderSide.BUY, OrderType.LIMIT, Decimal("5"), price=Decimal("100")
        )
        sell = await service.orders.submit_order(
            "bob", "BTC_USDT", OrderSide.SELL, OrderType.LIMIT, Decimal("5"), price=Decimal(price)
        )
        _print_balances("After placement", await _all_balances(service))

        console.print(f"[yellow]2. Engine matches 5 @ {price}[/yellow]")
        await service.queue.enqueue(
            engine_event_channels("BTC_USDT").incoming,
            encode_event(TradeMessage(
                id="demo-1", market="BTC_USDT", price=Decimal(price), quantity=Decimal("5"),
                maker_order_id=buy.id, taker_order_id=sell.id,
            )),
        )
        await service.start()
        consumer = service.worker.consumers["BTC_USDT"]
        while consumer.processed_count + consumer.dead_lettered_count == 0:
            await asyncio.sleep(0.01)
        await service.stop()

        _print_balances("After settlement", await _all_balances(service))

    async def _all_balances(service: LedgerService) -> List[Balance]:
        balances = []
        for user in ("alice", "bob", settings.ledger.fee_account_id):
            balances.extend(await service.store.list_balances(user))
        return balances

    try:
        asyncio.run(main())
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        logger.exception("Demo error")


if __name__ == "__main__":
    app()
