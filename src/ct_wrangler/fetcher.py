"""
External batch-fetch tool.

The wrangler never speaks get-entries itself. Each segment is handed to a
fetcher, by default certificate-transparency-go's ``scanlog``, which writes
one file per entry into the log's dump directory.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from .errors import FetchFailure, InvalidInvocation

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FetchSegment:
    """Request to materialize entries ``[start_index, end_index)`` of one log"""

    log_url: str
    dump_dir: Path
    start_index: int  # inclusive
    end_index: int  # exclusive
    batch_size: int = 100
    parallel_fetch: int = 4
    dump_full_chain: bool = False

    @property
    def width(self) -> int:
        return self.end_index - self.start_index


class SegmentFetcher(Protocol):
    async def __call__(self, segment: FetchSegment) -> None:
        """Fetch the segment or raise FetchFailure."""
        ...


class ScanlogFetcher:
    """Runs the ``scanlog`` binary once per segment."""

    def __init__(self, binary: str, timeout: Optional[float] = None):
        if not binary:
            raise InvalidInvocation("scanlog binary is required")
        self.binary = binary
        self.timeout = timeout

    def build_args(self, segment: FetchSegment) -> List[str]:
        return [
            self.binary,
            "-log_uri", segment.log_url,
            "-dump_dir", str(segment.dump_dir),
            "-start_index", str(segment.start_index),
            "-end_index", str(segment.end_index),
            "-batch_size", str(segment.batch_size),
            "-parallel_fetch", str(segment.parallel_fetch),
            f"-dump_full_chain={'true' if segment.dump_full_chain else 'false'}",
        ]

    async def __call__(self, segment: FetchSegment) -> None:
        args = self.build_args(segment)
        logger.debug(f"Running {' '.join(args)}")
        try:
            # stdout/stderr are inherited so scanlog progress shows up as-is
            proc = await asyncio.create_subprocess_exec(*args)
        except OSError as e:
            raise FetchFailure(f"Cannot start {self.binary}: {e}") from e

        try:
            code = await asyncio.wait_for(proc.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise FetchFailure(
                f"{self.binary} timed out after {self.timeout}s fetching "
                f"[{segment.start_index}, {segment.end_index})"
            )
        except asyncio.CancelledError:
            proc.kill()
            raise

        if code != 0:
            raise FetchFailure(
                f"{self.binary} exited with code {code} fetching "
                f"[{segment.start_index}, {segment.end_index})"
            )
