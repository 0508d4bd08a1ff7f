"""
Log currency classification.

A log is *current* when it may still hold certificates that are valid now.
Logs that only ever accepted certificates which must have expired are not
worth wrangling.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

import httpx

from .client import LogClient
from .errors import WranglerError
from .httpx_backoff import BackoffTransport
from .log_list import LogDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MAX_VALIDITY_DAYS = 825


class ValidityPolicy(Protocol):
    def max_validity(self, now: datetime) -> timedelta:
        """Longest lifetime a publicly trusted certificate issued before ``now`` can have."""
        ...


@dataclass(frozen=True)
class MaxValidityPolicy:
    """Fixed maximum certificate lifetime.

    825 days was the longest validity period allowed between March 2018 and
    September 2020. Lower it as maximum-validity rules tighten.
    """

    days: int = DEFAULT_MAX_VALIDITY_DAYS

    def max_validity(self, now: datetime) -> timedelta:
        return timedelta(days=self.days)


@dataclass(frozen=True)
class ScheduledValidityPolicy:
    """Maximum lifetime that switches to new values at fixed instants."""

    initial_days: int = DEFAULT_MAX_VALIDITY_DAYS
    schedule: Tuple[Tuple[datetime, int], ...] = ()

    def max_validity(self, now: datetime) -> timedelta:
        days = self.initial_days
        for effective, new_days in sorted(self.schedule):
            if now > effective:
                days = new_days
        return timedelta(days=days)


DEFAULT_POLICY = MaxValidityPolicy()

# 398-day certificates since 2020-09-01; the last 825-day ones expired by 2022-12-06.
BR_VALIDITY_SCHEDULE = ScheduledValidityPolicy(
    initial_days=825,
    schedule=((datetime(2022, 12, 6, 5, 0, tzinfo=timezone.utc), 398),),
)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def could_hold_unexpired(
    filed_before: datetime, now: datetime, policy: ValidityPolicy = DEFAULT_POLICY
) -> bool:
    """Can a certificate filed before ``filed_before`` still be valid at ``now``?"""
    now = _as_utc(now)
    return _as_utc(filed_before) + policy.max_validity(now) > now


def is_current(
    log: LogDescriptor, now: datetime, policy: ValidityPolicy = DEFAULT_POLICY
) -> bool:
    """Is it possible that this log holds certificates that are valid at ``now``?"""
    now = _as_utc(now)
    interval = log.temporal_interval
    if interval is not None and _as_utc(interval.end_exclusive) <= now:
        return False

    state = log.state
    if state.is_retired or state.is_readonly:
        if state.since is None:
            # Without a freeze time nothing tells us the log is still relevant
            return False
        if not could_hold_unexpired(state.since, now, policy):
            return False
    return True


def classify(
    catalog: Iterable[LogDescriptor],
    now: datetime,
    policy: ValidityPolicy = DEFAULT_POLICY,
) -> List[LogDescriptor]:
    """Keep the logs that may still hold unexpired certificates, in catalog order."""
    return [log for log in catalog if is_current(log, now, policy)]


@dataclass
class TreeSizeReport:
    """Tree sizes of surveyed logs, keyed by log URL"""

    sizes: Dict[str, int] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.sizes.values())


async def survey_tree_sizes(
    logs: Iterable[LogDescriptor],
    timeout: float = 30.0,
    user_agent: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    concurrency: int = 8,
    max_retries: int = 2,
) -> TreeSizeReport:
    """
    Query the current tree size of every log.

    A failing log is recorded in ``failures`` and does not stop the others.

    Args:
        logs: Logs to survey
        timeout: HTTP timeout per request
        user_agent: Custom user agent string
        transport: Transport shared by all requests (tests pass a mock)
        concurrency: Maximum number of logs queried at once
        max_retries: Retries per log before it counts as failed
    """
    report = TreeSizeReport()
    sem = asyncio.Semaphore(concurrency)

    async def query(log: LogDescriptor) -> None:
        async with sem:
            client = None
            try:
                client = LogClient(
                    log.url,
                    timeout=timeout,
                    user_agent=user_agent,
                    transport=transport or BackoffTransport(max_retries=max_retries),
                    kind=log.kind,
                )
                size = await client.fetch_tree_size()
            except WranglerError as e:
                logger.warning(f"Size query for {log.description or log.url} failed: {e}")
                report.failures[log.url] = str(e)
                return
            finally:
                if client is not None and transport is None:
                    await client.close()
            logger.info(f"{log.description or log.url}: {size:,} entries")
            report.sizes[log.url] = size

    await asyncio.gather(*(query(log) for log in logs))
    return report
