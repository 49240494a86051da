from __future__ import annotations

import asyncio
import time
from pathlib import Path

import typer
from rich.console import Console, Group
from rich.table import Table

from pump_token_feed.core.classifier import CategoryThresholds, classify
from pump_token_feed.core.config import Settings
from pump_token_feed.core.enums import TokenCategory
from pump_token_feed.core.formatting import format_market_cap, format_percent_change, format_price
from pump_token_feed.core.logging import configure_logging
from pump_token_feed.core.models import PriceMetric, TokenRecord
from pump_token_feed.pipeline.orchestrator import FeedSnapshot, TokenFeedPipeline
from pump_token_feed.sources.rest import DexPaidStatusClient, PoolMetricsClient
from pump_token_feed.writer.atomic import AtomicSnapshotWriter

app = typer.Typer(help="Live new-token feed CLI")
console = Console()


def _short_mint(mint: str) -> str:
    if len(mint) <= 12:
        return mint
    return f"{mint[:4]}...{mint[-4:]}"


def _category_table(
    title: str,
    records: tuple[TokenRecord, ...],
    price_data: dict[str, PriceMetric],
    limit: int,
) -> Table:
    table = Table(title=f"{title} ({len(records)})", title_justify="left")
    table.add_column("Mint")
    table.add_column("Symbol")
    table.add_column("Name")
    table.add_column("Market cap", justify="right")
    table.add_column("Price", justify="right")
    table.add_column("24h", justify="right")
    for record in records[:limit]:
        metric = price_data.get(record.mint)
        table.add_row(
            _short_mint(record.mint),
            record.symbol,
            record.name,
            format_market_cap(record.market_cap_value),
            record.price or "-",
            format_percent_change(metric.price_change_24h) if metric is not None else "-",
        )
    return table


def _render_snapshot(snapshot: FeedSnapshot, limit: int) -> Group:
    status = "[green]Connected[/green]" if snapshot.connected else "[red]Disconnected[/red]"
    header = f"{status} tokens={len(snapshot.records)} frames_in_trail={len(snapshot.raw_trail)}"
    if snapshot.is_price_loading:
        header += " [yellow](fetching prices)[/yellow]"
    if snapshot.last_error:
        header += f" [red]{snapshot.last_error}[/red]"
    return Group(
        header,
        _category_table("New", snapshot.new, snapshot.price_data, limit),
        _category_table("Bonding", snapshot.bonding, snapshot.price_data, limit),
        _category_table("Graduated", snapshot.graduated, snapshot.price_data, limit),
    )


async def _stream(
    settings: Settings,
    *,
    duration_seconds: float | None,
    refresh_seconds: float,
    limit: int,
    export_dir: Path | None,
) -> None:
    pipeline = TokenFeedPipeline(settings)
    pipeline.start()
    started = time.monotonic()
    try:
        while duration_seconds is None or time.monotonic() - started < duration_seconds:
            await asyncio.sleep(refresh_seconds)
            console.print(_render_snapshot(pipeline.snapshot(), limit))
    finally:
        frame = pipeline.store.to_frame()
        await pipeline.stop()
        if export_dir is not None:
            path = AtomicSnapshotWriter(export_dir).write_snapshot(frame)
            console.print(f"[green]Snapshot of {frame.height} tokens written to {path}[/green]")


@app.command("stream")
def stream(
    duration: float | None = typer.Option(
        default=None,
        min=1.0,
        help="Stop after this many seconds (default: run until interrupted)",
    ),
    refresh_seconds: float = typer.Option(default=5.0, min=0.5, help="Seconds between table refreshes"),
    limit: int = typer.Option(default=10, min=1, help="Rows shown per category"),
    export: Path | None = typer.Option(
        default=None,
        help="Directory receiving a parquet snapshot of the collection on exit",
    ),
) -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    try:
        asyncio.run(
            _stream(
                settings,
                duration_seconds=duration,
                refresh_seconds=refresh_seconds,
                limit=limit,
                export_dir=export,
            )
        )
    except KeyboardInterrupt:
        console.print("Stopped by user.")


async def _fetch_metric(settings: Settings, mint: str) -> PriceMetric | None:
    client = PoolMetricsClient(settings.pool_search_base_url, settings.http_timeout_seconds)
    try:
        return await client.fetch_price_metric(mint)
    finally:
        await client.aclose()


@app.command("fetch-metric")
def fetch_metric(mint: str = typer.Argument(help="Mint address")) -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    metric = asyncio.run(_fetch_metric(settings, mint))
    if metric is None:
        console.print(f"No price data available for {mint}")
        raise typer.Exit(code=1)

    thresholds = CategoryThresholds(bonding=settings.bonding_threshold, graduated=settings.graduated_threshold)
    console.print(
        f"price={format_price(metric.price)}, "
        f"market_cap={format_market_cap(metric.market_cap)}, "
        f"liquidity={format_market_cap(metric.liquidity)}, "
        f"volume_24h={format_market_cap(metric.volume_24h)}, "
        f"change_24h={format_percent_change(metric.price_change_24h)}, "
        f"curve={metric.curve_percent:.1f}%, "
        f"category={classify(metric.market_cap, thresholds).value}"
    )


async def _dex_paid(settings: Settings, mint: str) -> bool:
    client = DexPaidStatusClient(settings.dex_orders_base_url, settings.http_timeout_seconds)
    try:
        return await client.fetch_paid_status(mint)
    finally:
        await client.aclose()


@app.command("dex-paid")
def dex_paid(mint: str = typer.Argument(help="Mint address")) -> None:
    settings = Settings()
    configure_logging(settings.log_level)
    paid = asyncio.run(_dex_paid(settings, mint))
    label = "[green]paid[/green]" if paid else "not paid"
    console.print(f"DEX profile for {mint}: {label}")


@app.command("classify")
def classify_value(market_cap: float = typer.Argument(help="Market cap in USD")) -> None:
    settings = Settings()
    thresholds = CategoryThresholds(bonding=settings.bonding_threshold, graduated=settings.graduated_threshold)
    category = classify(market_cap, thresholds)
    style = {
        TokenCategory.NEW: "cyan",
        TokenCategory.BONDING: "yellow",
        TokenCategory.GRADUATED: "green",
    }[category]
    console.print(f"[{style}]{category.value}[/{style}]")


@app.command("show-config")
def show_config() -> None:
    settings = Settings()
    for name, value in settings.model_dump().items():
        console.print(f"{name} = [bold]{value}[/bold]")


if __name__ == "__main__":
    app()
