"""Command-line entry points: wrangle one log, list the current logs."""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .config import WranglerConfig
from .currency import (
    BR_VALIDITY_SCHEDULE,
    MaxValidityPolicy,
    ValidityPolicy,
    classify,
    survey_tree_sizes,
)
from .errors import WranglerError
from .log_list import LOG_LIST_URL, LogList, fetch_log_list, load_log_list
from .wrangler import WrangleState, run

logger = logging.getLogger(__name__)
console = Console()


def _fail(e: WranglerError) -> None:
    logger.error(f"{type(e).__name__}: {e}")
    sys.exit(e.exit_code)


@click.group()
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
)
def cli(log_level: str) -> None:
    """Resumable Certificate Transparency log mirroring."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("wrangle")
@click.argument("scanlog")
@click.argument("log_url")
@click.argument("storage", type=click.Path(file_okay=False))
@click.argument("log_id")
@click.option("--stride", type=int, default=20_000, show_default=True, help="Entries per segment")
@click.option("--batch-size", type=int, default=100, show_default=True, help="Entries per get-entries call")
@click.option("--parallel-fetch", type=int, default=4, show_default=True, help="Concurrent scanlog fetches")
@click.option("--sth-timeout", type=float, default=30.0, show_default=True, help="Seconds per STH request")
@click.option(
    "--fetch-timeout",
    type=float,
    default=4 * 3600.0,
    show_default=True,
    help="Seconds per segment, 0 to wait forever",
)
@click.option("--max-retries", type=int, default=5, show_default=True, help="STH request retries")
@click.option("--retry-delay", type=float, default=1.0, show_default=True, help="Initial backoff delay")
def wrangle_cmd(
    scanlog: str,
    log_url: str,
    storage: str,
    log_id: str,
    stride: int,
    batch_size: int,
    parallel_fetch: int,
    sth_timeout: float,
    fetch_timeout: float,
    max_retries: int,
    retry_delay: float,
) -> None:
    """Mirror LOG_URL into STORAGE/LOG_ID using the SCANLOG binary until caught up."""
    config = WranglerConfig(
        stride=stride,
        batch_size=batch_size,
        parallel_fetch=parallel_fetch,
        sth_timeout=sth_timeout,
        fetch_timeout=fetch_timeout or None,
        max_retries=max_retries,
        retry_delay=retry_delay,
    )
    try:
        result = asyncio.run(run(log_id, log_url, storage, scanlog, config))
    except WranglerError as e:
        _fail(e)
        return

    if result.state is WrangleState.SYNCED:
        console.print(f"[bold]{log_id}[/]: already synced at {result.tree_size:,} entries")
    else:
        console.print(
            f"[bold]{log_id}[/]: fetched {result.entries_fetched:,} entries in "
            f"{len(result.segments)} segments, now at {result.next_index:,}"
        )


@cli.command("current-logs")
@click.option(
    "--log-list",
    default=LOG_LIST_URL,
    show_default=True,
    help="Path or URL of a v3 log list",
)
@click.option("--now", default=None, help="ISO timestamp to classify at (default: now)")
@click.option(
    "--max-validity-days",
    type=int,
    default=825,
    show_default=True,
    help="Certificates older than this are assumed expired",
)
@click.option(
    "--br-schedule/--no-br-schedule",
    default=False,
    help="Use the 825 -> 398 day Baseline Requirements schedule instead of a fixed cutoff",
)
@click.option("--sizes/--no-sizes", default=True, show_default=True, help="Query tree sizes")
def current_logs_cmd(
    log_list: str,
    now: Optional[str],
    max_validity_days: int,
    br_schedule: bool,
    sizes: bool,
) -> None:
    """List logs that may still hold unexpired certificates."""
    if now:
        try:
            at = datetime.fromisoformat(now.replace("Z", "+00:00"))
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="--now") from e
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)
    else:
        at = datetime.now(timezone.utc)

    policy: ValidityPolicy = (
        BR_VALIDITY_SCHEDULE if br_schedule else MaxValidityPolicy(days=max_validity_days)
    )

    async def main() -> None:
        catalog: LogList
        if log_list.startswith(("http://", "https://")):
            catalog = await fetch_log_list(log_list)
        else:
            catalog = load_log_list(log_list)

        all_logs = list(catalog.logs())
        current = classify(all_logs, at, policy)
        console.print(f"[bold]{len(current)}[/] of {len(all_logs)} logs are current")

        report = await survey_tree_sizes(current) if sizes else None

        table = Table()
        table.add_column("Log")
        table.add_column("Operator")
        table.add_column("State")
        table.add_column("URL")
        if report is not None:
            table.add_column("Entries", justify="right")
        for log in current:
            row = [log.description, log.operator, log.state.name, log.url]
            if report is not None:
                size = report.sizes.get(log.url)
                row.append(f"{size:,}" if size is not None else "[red]failed[/]")
            table.add_row(*row)
        console.print(table)

        if report is not None:
            console.print(f"[bold]Total[/]: {report.total:,} entries")
            if report.failures:
                console.print(f"[yellow]{len(report.failures)} size queries failed[/]")

    try:
        asyncio.run(main())
    except WranglerError as e:
        _fail(e)


def main() -> None:
    cli(auto_envvar_prefix="CT_WRANGLER")


if __name__ == "__main__":
    main()
