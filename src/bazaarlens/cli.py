"""BazaarLens CLI."""

import sys

import click
import yaml
from pydantic import ValidationError

from bazaarlens.analysis.indicators import (
    calculate_bollinger_bands,
    calculate_ema_series,
    calculate_macd,
    calculate_rsi_series,
    calculate_sma_series,
    calculate_support_resistance,
    calculate_vwap_series,
)
from bazaarlens.app import AnalyticsPipeline, setup_logging
from bazaarlens.config_loader import AppConfig, load_config_with_overrides
from bazaarlens.constants import CandleInterval, LogLevel
from bazaarlens.data.snapshot_loader import MarketSnapshot, SnapshotValidationError, load_snapshot


def _fail(message: str) -> None:
    click.echo(message, err=True)
    sys.exit(1)


def _pipeline(ctx: click.Context, snapshot_path: str | None) -> tuple[AnalyticsPipeline, MarketSnapshot]:
    """Build a pipeline and load the snapshot into it."""
    config: AppConfig = ctx.obj["config"]
    path = snapshot_path or config.environment.snapshot_path
    try:
        snapshot = load_snapshot(path)
    except (FileNotFoundError, SnapshotValidationError) as e:
        _fail(f"Could not load snapshot: {e}")

    pipeline = AnalyticsPipeline(config)
    pipeline.load_snapshot(snapshot)
    return pipeline, snapshot


snapshot_option = click.option(
    "--snapshot",
    "snapshot_path",
    type=click.Path(),
    default=None,
    help="Market snapshot JSON (defaults to environment.snapshot_path)",
)


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=True),
    default=None,
    help="Path to configuration file (built-in defaults when omitted)",
)
@click.option(
    "--log-level",
    type=click.Choice([level.value for level in LogLevel], case_sensitive=False),
    default=None,
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx, config, log_level):
    """BazaarLens market analytics."""
    try:
        app_config = load_config_with_overrides(config, log_level=log_level)
    except (ValidationError, yaml.YAMLError) as e:
        _fail(f"Invalid configuration: {e}")

    setup_logging(app_config.environment.log_level)
    ctx.ensure_object(dict)
    ctx.obj["config"] = app_config


@cli.command()
@snapshot_option
@click.option("--top", default=20, show_default=True, help="Number of products to show")
@click.pass_context
def score(ctx, snapshot_path, top):
    """Score flip opportunities and flag manipulated prices."""
    pipeline, _ = _pipeline(ctx, snapshot_path)
    pipeline.score_products()

    products = sorted(
        pipeline.catalog.get_products(), key=lambda p: p.opportunity_score, reverse=True
    )
    click.echo(f"{'PRODUCT':<32} {'BID':>12} {'ASK':>12} {'SCORE':>6}  MANIPULATED")
    for p in products[:top]:
        flag = f"yes ({p.price_deviation_percent:+.1f}%)" if p.is_manipulated else "no"
        click.echo(
            f"{p.display_name:<32} {p.bid_price:>12,.1f} {p.ask_price:>12,.1f} "
            f"{p.opportunity_score:>6.2f}  {flag}"
        )


@cli.command()
@click.argument("product_key")
@snapshot_option
@click.pass_context
def orderbook(ctx, product_key, snapshot_path):
    """Analyze a product's order book."""
    pipeline, _ = _pipeline(ctx, snapshot_path)
    analysis = pipeline.orderbook.analyze_product(product_key, pipeline.books)
    if analysis is None:
        _fail(f"No order book for {product_key}")

    imbalance, stats, depth = analysis.imbalance, analysis.stats, analysis.depth
    click.echo(f"Order book: {product_key}")
    click.echo(
        f"  Imbalance: {imbalance.ratio:+.3f} ({imbalance.trend.value}) "
        f"bid {imbalance.bid_pressure_percent:.1f}% / ask {imbalance.ask_pressure_percent:.1f}%"
    )
    click.echo(
        f"  Best bid {stats.best_bid:,.1f} | best ask {stats.best_ask:,.1f} | "
        f"spread {stats.spread:,.1f} | mid {stats.mid_price:,.1f}"
    )
    click.echo(
        f"  Depth: bid {depth.bid_depth:,.0f} / ask {depth.ask_depth:,.0f} "
        f"(ratio {depth.depth_ratio:.2f}), liquidity {depth.liquidity_score:.1f}/100"
    )
    for whale in analysis.whales:
        click.echo(
            f"  Whale {whale.side.value}: {whale.amount:,} @ {whale.unit_price:,.1f} (z={whale.z_score:.2f})"
        )
    for wall in depth.walls:
        click.echo(f"  Wall {wall.side.value}: {wall.volume:,} @ {wall.price:,.1f} ({wall.percent_from_mid:+.2f}%)")
    for level in analysis.support + analysis.resistance:
        click.echo(
            f"  {level.level_type.value.title()}: {level.price:,.1f} vol {level.total_volume:,} "
            f"strength {level.strength:.2f} ({level.percent_from_mid:+.2f}%)"
        )


@cli.command()
@snapshot_option
@click.pass_context
def insights(ctx, snapshot_path):
    """Scan for hot products, surges, spreads, fire sales and movers."""
    pipeline, snapshot = _pipeline(ctx, snapshot_path)
    pipeline.score_products()
    result = pipeline.refresh_insights(snapshot.timestamp)

    click.echo(f"Hot products ({len(result.hot_products)}, {result.new_insights_count} new)")
    for h in result.hot_products:
        arrow = "+" if h.is_increasing else "-"
        click.echo(f"  {h.product_name:<32} {arrow}{h.price_change_percent:.2f}%")
    click.echo(f"Volume surges ({len(result.volume_surges)})")
    for v in result.volume_surges:
        click.echo(f"  {v.product_name:<32} {v.surge_ratio:.2f}x")
    click.echo(f"Spread opportunities ({len(result.spread_opportunities)})")
    for s in result.spread_opportunities:
        click.echo(f"  {s.product_name:<32} +{s.spread_change_percent:.1f}%")
    click.echo(f"Fire sales ({len(result.fire_sales)})")
    for f in result.fire_sales:
        click.echo(f"  {f.product_name:<32} -{f.discount_from_average_percent:.1f}% vs 24h avg")
    click.echo(f"Gainers ({len(result.gainers)}) / Losers ({len(result.losers)})")
    for m in result.gainers + result.losers:
        click.echo(f"  {m.product_name:<32} {m.price_change_percent_24h:+.2f}%")


@cli.command("index")
@click.argument("slug")
@snapshot_option
@click.option(
    "--interval",
    type=click.Choice([i.value for i in CandleInterval]),
    default=CandleInterval.ONE_HOUR.value,
    show_default=True,
)
@click.option("--limit", default=100, show_default=True, help="Candles per constituent")
@click.pass_context
def index_cmd(ctx, slug, snapshot_path, interval, limit):
    """Print a synthetic index series."""
    pipeline, _ = _pipeline(ctx, snapshot_path)
    if pipeline.indices.get_index(slug) is None:
        _fail(f"Unknown index: {slug}")

    series = pipeline.indices.aggregated_candles(slug, CandleInterval(interval), limit)
    for point in series:
        click.echo(
            f"{point.time.isoformat()}  O {point.open:8.2f}  H {point.high:8.2f}  "
            f"L {point.low:8.2f}  C {point.close:8.2f}  n={point.contributors}"
        )
    if not series:
        click.echo("No data for index")


@cli.command()
@snapshot_option
@click.option("--product", "product_key", default=None, help="Show products related to this one")
@click.option("--count", default=10, show_default=True)
@click.pass_context
def correlations(ctx, snapshot_path, product_key, count):
    """Show the correlation matrix or products related to one product."""
    pipeline, _ = _pipeline(ctx, snapshot_path)

    if product_key:
        related = pipeline.analytics.related_products(product_key, count)
        if not related:
            click.echo(f"No correlation data for {product_key}")
        for r in related:
            click.echo(f"  {r.product_name:<32} {r.correlation:+.3f} ({r.strength.value})")
        return

    matrix = pipeline.analytics.correlation_matrix()
    keys = matrix.product_keys
    click.echo(f"Correlation matrix over {len(keys)} products")
    pairs = sorted(
        ((a, b, matrix.matrix[a][b]) for i, a in enumerate(keys) for b in keys[i + 1 :]),
        key=lambda pair: abs(pair[2]),
        reverse=True,
    )
    for a, b, value in pairs[:count]:
        click.echo(f"  {a} ~ {b}: {value:+.3f}")


@cli.command()
@click.argument("product_key")
@snapshot_option
@click.option("--period", default=20, show_default=True, help="SMA/EMA/Bollinger period")
@click.pass_context
def indicators(ctx, product_key, snapshot_path, period):
    """Show the latest technical indicator values for a product's hourly candles."""
    pipeline, _ = _pipeline(ctx, snapshot_path)
    candles = pipeline.market.get_candles(product_key, CandleInterval.ONE_HOUR, limit=7 * 24)
    if not candles:
        _fail(f"No hourly candles for {product_key}")

    def latest(points) -> str:
        return f"{points[-1].value:,.2f}" if points else "n/a"

    bands = calculate_bollinger_bands(candles, period)
    macd = calculate_macd(candles)
    click.echo(f"Indicators: {product_key} ({len(candles)} hourly candles)")
    click.echo(f"  SMA({period}): {latest(calculate_sma_series(candles, period))}")
    click.echo(f"  EMA({period}): {latest(calculate_ema_series(candles, period))}")
    click.echo(f"  Bollinger: {latest(bands.lower)} / {latest(bands.middle)} / {latest(bands.upper)}")
    click.echo(f"  RSI(14): {latest(calculate_rsi_series(candles))}")
    click.echo(f"  MACD: {latest(macd.macd)} signal {latest(macd.signal)} hist {latest(macd.histogram)}")
    click.echo(f"  VWAP: {latest(calculate_vwap_series(candles))}")
    levels = calculate_support_resistance(candles)
    if not levels:
        click.echo("  Levels: none")
    for level in levels:
        click.echo(
            f"  {level.level_type.value.title()}: {level.price:,.2f} "
            f"(strength {level.strength:.2f}, {level.touch_count} touches)"
        )


@cli.command()
@snapshot_option
@click.pass_context
def aggregate(ctx, snapshot_path):
    """Aggregate snapshot ticks into candles."""
    pipeline, snapshot = _pipeline(ctx, snapshot_path)
    total = pipeline.aggregator.aggregate_all(snapshot.timestamp)
    click.echo(f"Upserted {total} candles")
    for interval in CandleInterval:
        counts = [
            len(pipeline.market.get_candles(key, interval, limit=10_000))
            for key in pipeline.market.get_product_keys()
        ]
        click.echo(f"  {interval.value:>3}: {sum(counts)} candles")


@cli.command("show-config")
@click.pass_context
def show_config(ctx):
    """Print the effective configuration."""
    config: AppConfig = ctx.obj["config"]
    click.echo(yaml.safe_dump(config.model_dump(mode="json"), default_flow_style=False, sort_keys=False))


if __name__ == "__main__":
    cli()

# Alias for __main__.py
main = cli
