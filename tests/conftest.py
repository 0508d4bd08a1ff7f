from pathlib import Path
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from ct_wrangler.client import SignedTreeHead
from ct_wrangler.errors import FetchFailure
from ct_wrangler.fetcher import FetchSegment


class FakeFetcher:
    """Stands in for scanlog: writes one file per index into the dump dir."""

    def __init__(self) -> None:
        self.segments: List[FetchSegment] = []
        self.fail_next = False
        self.short_by = 0

    async def __call__(self, segment: FetchSegment) -> None:
        self.segments.append(segment)
        if self.fail_next:
            self.fail_next = False
            # a killed scanlog may already have written part of the range
            write_entries(segment.dump_dir, segment.start_index, segment.start_index + 1)
            raise FetchFailure("scanlog exited with code 1")
        write_entries(segment.dump_dir, segment.start_index, segment.end_index - self.short_by)

    @property
    def ranges(self) -> List[tuple]:
        return [(s.start_index, s.end_index) for s in self.segments]


def write_entries(dump_dir: Path, start: int, end: int) -> None:
    dump_dir.mkdir(parents=True, exist_ok=True)
    for idx in range(start, end):
        (dump_dir / f"cert_{idx}.pem").write_text(f"entry {idx}")


def make_sth(tree_size: int, timestamp: Optional[int] = None) -> SignedTreeHead:
    return SignedTreeHead(
        tree_size=tree_size,
        timestamp=timestamp if timestamp is not None else 1_600_000_000_000 + tree_size,
        sha256_root_hash="root",
        tree_head_signature="sig",
    )


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def sth_client():
    client = AsyncMock()
    client.get_sth = AsyncMock(return_value=make_sth(0))
    return client
