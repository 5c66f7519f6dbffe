"""
ccsolver CLI - run the solver and inspect its configuration.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path

import click

from ccsolver.core.errors import ConfigError, ProtocolError, SolverError
from ccsolver.utils.logger import get_logger, setup_logging


logger = get_logger("cli")


def _load(ctx):
    """Load config and build the context, exiting non-zero on bad config."""
    from ccsolver.core.config import load_config
    from ccsolver.core.context import SolverContext

    try:
        config = load_config(ctx.obj["env_file"])
        return SolverContext.from_config(config)
    except (ConfigError, ValueError) as e:
        click.echo(f"❌ Configuration error: {e}", err=True)
        sys.exit(2)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--env-file", default=None, type=click.Path(dir_okay=False), help="Read settings from this .env file")
@click.option("--json-logs", is_flag=True, help="Log as JSON lines")
@click.option("--log-dir", default=None, help="Also write logs to this directory")
@click.version_option(version="0.1.0")
@click.pass_context
def cli(ctx, debug, env_file, json_logs, log_dir):
    """Cross-chain intent solver"""
    level = logging.DEBUG if debug else logging.INFO
    setup_logging(level=level, log_dir=log_dir, log_to_file=log_dir is not None, json_output=json_logs)

    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


# =============================================================================
# Run
# =============================================================================


@cli.command("run")
@click.pass_context
def run(ctx):
    """Connect to the auction feed and solve intents until it disconnects"""
    context = _load(ctx)

    async def run_solver():
        session = context.create_session()
        await context.start()
        try:
            await session.connect_and_register()
            click.echo(f"Solver {context.config.solver_id} registered. Press Ctrl+C to stop.")
            await session.run()
        finally:
            await session.close()
            await context.close()
            logger.info(f"Session stats: {session.stats()}")

    try:
        asyncio.run(run_solver())
    except ProtocolError as e:
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nSolver stopped.")
        click.echo("  In-flight settlements were interrupted; audit recent intents on-chain.")


# =============================================================================
# Offline tools
# =============================================================================


@cli.command("quote")
@click.option("--intent-file", required=True, type=click.Path(exists=True, dir_okay=False), help="Intent JSON file")
@click.option("--intent-id", default="cli-quote", help="Intent id to quote under")
@click.pass_context
def quote(ctx, intent_file, intent_id):
    """Quote an intent against live routers without bidding"""
    from ccsolver.core.intent import parse_intent

    context = _load(ctx)

    async def run_quote(intent):
        try:
            return await context.engine.quote_detailed(intent)
        finally:
            await context.close()

    try:
        intent = parse_intent(Path(intent_file).read_text(), intent_id=intent_id)
        minimum = intent.min_amount_out
        result = asyncio.run(run_quote(intent))
    except SolverError as e:
        click.echo(f"❌ Cannot quote: {e}", err=True)
        sys.exit(1)

    click.echo(f"Quote for {intent!r}")
    click.echo(f"  Bridged:    {result.bridged}")
    click.echo(f"  Flat cost:  {result.flat_cost}")
    click.echo(f"  Commission: {result.commission}")
    click.echo(f"  Offer:      {result.offer}")
    click.echo(f"  Minimum:    {minimum}")
    if result.offer > minimum:
        click.echo("  ✓ Would bid")
    else:
        click.echo("  ✗ Would not bid")


@cli.command("address")
@click.pass_context
def address(ctx):
    """Show the signing address and payout addresses"""
    context = _load(ctx)
    click.echo(f"Signing address: {context.signer.address}")
    for chain, adapter in context.adapters.items():
        click.echo(f"  {chain.value:<9} payout: {adapter.solver_address}")


@cli.command("fees")
@click.option("--json", "as_json", is_flag=True, help="Print as JSON")
@click.pass_context
def fees(ctx, as_json):
    """Show the effective fee table"""
    context = _load(ctx)
    table = context.fees.to_dict()

    if as_json:
        click.echo(json.dumps(table, indent=2))
        return

    click.echo(f"Commission: {context.fees.commission} / 100000")
    click.echo("Flat fees (bridging-token base units):")
    for pair, costs in table["flat_fees"].items():
        click.echo(f"  {pair:<20} src={costs['src_cost']:<12} dst={costs['dst_cost']}")


if __name__ == "__main__":
    cli()
