"""
Segment wrangler.

One resumable synchronization pass for a single log: load the checkpoint,
fetch a fresh STH, reject truncated logs, then drive stride-sized segments
through the external fetch tool until the local mirror has caught up. The
checkpoint only advances after the artifact count on disk confirms a segment.
"""

import enum
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Protocol, Union

from .checkpoint import Checkpoint, CheckpointStore
from .client import LogClient, SignedTreeHead
from .config import WranglerConfig
from .errors import ConsistencyViolation, IntegrityViolation, InvalidInvocation
from .fetcher import FetchSegment, ScanlogFetcher, SegmentFetcher
from .httpx_backoff import BackoffTransport

logger = logging.getLogger(__name__)


class WrangleState(enum.Enum):
    INIT = "init"
    FETCHING = "fetching"
    VERIFYING = "verifying"
    SYNCED = "synced"  # nothing new since the last pass
    CAUGHT_UP = "caught_up"  # fetched new entries and reached the tree size
    CONSISTENCY_VIOLATION = "consistency_violation"


class SthSource(Protocol):
    async def get_sth(self) -> SignedTreeHead:
        ...


@dataclass
class SegmentStats:
    """Timing of one verified segment"""

    start_index: int
    end_index: int
    duration: float  # seconds

    @property
    def entries(self) -> int:
        return self.end_index - self.start_index

    @property
    def ms_per_entry(self) -> float:
        return self.duration * 1000 / self.entries if self.entries else 0.0


@dataclass
class WrangleResult:
    """Outcome of one synchronization pass"""

    log_id: str
    state: WrangleState
    start_index: int
    next_index: int
    tree_size: int
    segments: List[SegmentStats] = field(default_factory=list)

    @property
    def entries_fetched(self) -> int:
        return self.next_index - self.start_index


class SegmentWrangler:
    """Drives one log's local mirror forward in stride-sized segments."""

    def __init__(
        self,
        log_id: str,
        log_url: str,
        storage_path: Union[str, Path],
        fetcher: SegmentFetcher,
        client: SthSource,
        config: Optional[WranglerConfig] = None,
    ):
        if not log_url:
            raise InvalidInvocation("log_url is required")
        if storage_path is None or not str(storage_path):
            raise InvalidInvocation("storage_path is required")
        self.config = config or WranglerConfig()
        self.config.validate()
        self.store = CheckpointStore(storage_path, log_id)
        self.log_id = log_id
        self.log_url = log_url
        self.fetcher = fetcher
        self.client = client
        self.state = WrangleState.INIT

    async def run(self) -> WrangleResult:
        """Run one pass; raises a WranglerError subclass on any fatal condition."""
        with self.store.lock():
            return await self._run()

    async def _run(self) -> WrangleResult:
        self.state = WrangleState.INIT
        stride = self.config.stride
        self.store.ensure_dirs()

        checkpoint = self.store.load()
        if checkpoint is None:
            logger.info(f"No checkpoint for {self.log_id}, starting from index 0")
            checkpoint = Checkpoint()

        # A crash between a verified fetch and the checkpoint write leaves up
        # to one stride of uncommitted entries; anything else is corruption.
        count = self.store.count_artifacts()
        if not checkpoint.next_index <= count <= checkpoint.next_index + stride:
            raise IntegrityViolation(
                f"{self.log_id}: {count} entries on disk, expected between "
                f"{checkpoint.next_index} and {checkpoint.next_index + stride}"
            )
        if count > checkpoint.next_index:
            logger.info(
                f"{self.log_id}: {count - checkpoint.next_index} uncommitted entries "
                f"beyond index {checkpoint.next_index}, they will be re-fetched"
            )

        sth = await self.client.get_sth()
        self._check_consistency(checkpoint, sth)

        start_index = checkpoint.next_index
        result = WrangleResult(
            log_id=self.log_id,
            state=self.state,
            start_index=start_index,
            next_index=start_index,
            tree_size=sth.tree_size,
        )

        if checkpoint.last_sth != sth:
            checkpoint.last_sth = sth
            self.store.save(checkpoint)

        if sth.tree_size == checkpoint.next_index:
            logger.info(f"{self.log_id}: no entries appended since last check")
            self.state = result.state = WrangleState.SYNCED
            return result

        logger.info(
            f"{self.log_id}: fetching {sth.tree_size - checkpoint.next_index:,} entries "
            f"from index {checkpoint.next_index:,} to {sth.tree_size:,}"
        )
        while checkpoint.next_index < sth.tree_size:
            stats = await self._fetch_segment(checkpoint, sth.tree_size)
            result.segments.append(stats)
            result.next_index = checkpoint.next_index

        logger.info(f"{self.log_id}: caught up to CT log at {sth.tree_size:,} entries")
        self.state = result.state = WrangleState.CAUGHT_UP
        return result

    def _check_consistency(self, checkpoint: Checkpoint, sth: SignedTreeHead) -> None:
        previous = checkpoint.last_sth
        previous_size = previous.tree_size if previous else checkpoint.next_index
        if sth.tree_size < previous_size or sth.tree_size < checkpoint.next_index:
            self.state = WrangleState.CONSISTENCY_VIOLATION
            logger.error(
                f"CT log {self.log_id} truncated: tree size went from {previous_size} "
                f"to {sth.tree_size} ({previous} -> {sth})"
            )
            raise ConsistencyViolation(
                f"CT log {self.log_id} is broken: tree size decreased from "
                f"{previous_size} to {sth.tree_size}",
                previous_size=previous_size,
                observed_size=sth.tree_size,
            )
        if previous is not None and sth.timestamp < previous.timestamp:
            logger.warning(
                f"{self.log_id}: STH timestamp went backwards "
                f"({previous.timestamp} -> {sth.timestamp})"
            )

    async def _fetch_segment(self, checkpoint: Checkpoint, tree_size: int) -> SegmentStats:
        start = checkpoint.next_index
        # Clamped so the trailing segment asks for exactly what the log has
        end = min(start + self.config.stride, tree_size)
        segment = FetchSegment(
            log_url=self.log_url,
            dump_dir=self.store.entries_dir,
            start_index=start,
            end_index=end,
            batch_size=self.config.batch_size,
            parallel_fetch=self.config.parallel_fetch,
            dump_full_chain=self.config.dump_full_chain,
        )

        self.state = WrangleState.FETCHING
        started = time.monotonic()
        await self.fetcher(segment)
        duration = time.monotonic() - started

        self.state = WrangleState.VERIFYING
        count = self.store.count_artifacts()
        if count != end:
            raise IntegrityViolation(
                f"{self.log_id}: expected {end} entries on disk after fetching "
                f"[{start}, {end}), found {count}"
            )

        checkpoint.next_index = end
        self.store.save(checkpoint)

        stats = SegmentStats(start_index=start, end_index=end, duration=duration)
        logger.info(
            f"{self.log_id}: fetched {stats.entries:,} entries in {duration:.1f}s, "
            f"{stats.ms_per_entry:.1f}ms per entry"
        )
        return stats


async def run(
    log_id: str,
    log_url: str,
    storage_path: Union[str, Path],
    scanlog: str,
    config: Optional[WranglerConfig] = None,
) -> WrangleResult:
    """Wrangle one log with scanlog and a live STH client."""
    config = config or WranglerConfig()
    fetcher = ScanlogFetcher(scanlog, timeout=config.fetch_timeout)
    transport = BackoffTransport(
        max_retries=config.max_retries,
        retry_delay=config.retry_delay,
        max_retry_delay=config.max_retry_delay,
    )
    async with LogClient(
        log_url,
        timeout=config.sth_timeout,
        user_agent=config.user_agent,
        transport=transport,
    ) as client:
        wrangler = SegmentWrangler(log_id, log_url, storage_path, fetcher, client, config)
        return await wrangler.run()
