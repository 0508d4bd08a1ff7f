import asyncio
import shutil
from pathlib import Path
from unittest.mock import patch

import pytest

from ct_wrangler.errors import FetchFailure
from ct_wrangler.fetcher import FetchSegment, ScanlogFetcher

SEGMENT = FetchSegment(
    log_url="https://ct.example.com/logs/test2025/",
    dump_dir=Path("/srv/ct/test2025"),
    start_index=40000,
    end_index=60000,
)


class FakeProcess:
    """asyncio.subprocess.Process double whose wait() blocks until killed."""

    def __init__(self, returncode=None):
        self.returncode = returncode
        self.killed = False
        self._exited = asyncio.Event()
        if returncode is not None:
            self._exited.set()

    async def wait(self):
        await self._exited.wait()
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9
        self._exited.set()


def test_build_args():
    args = ScanlogFetcher("/usr/local/bin/scanlog").build_args(SEGMENT)

    assert args == [
        "/usr/local/bin/scanlog",
        "-log_uri", "https://ct.example.com/logs/test2025/",
        "-dump_dir", "/srv/ct/test2025",
        "-start_index", "40000",
        "-end_index", "60000",
        "-batch_size", "100",
        "-parallel_fetch", "4",
        "-dump_full_chain=false",
    ]
    assert SEGMENT.width == 20000


@pytest.mark.asyncio
async def test_successful_fetch():
    proc = FakeProcess(returncode=0)
    with patch("asyncio.create_subprocess_exec", return_value=proc) as spawn:
        await ScanlogFetcher("scanlog")(SEGMENT)

    assert spawn.call_args.args[0] == "scanlog"
    assert "-end_index" in spawn.call_args.args


@pytest.mark.asyncio
async def test_nonzero_exit_is_fetch_failure():
    with patch("asyncio.create_subprocess_exec", return_value=FakeProcess(returncode=1)):
        with pytest.raises(FetchFailure, match="exited with code 1"):
            await ScanlogFetcher("scanlog")(SEGMENT)


@pytest.mark.asyncio
async def test_missing_binary_is_fetch_failure(tmp_path):
    fetcher = ScanlogFetcher(str(tmp_path / "no-such-scanlog"))

    with pytest.raises(FetchFailure, match="Cannot start"):
        await fetcher(SEGMENT)


@pytest.mark.asyncio
async def test_timeout_kills_process():
    proc = FakeProcess()
    with patch("asyncio.create_subprocess_exec", return_value=proc):
        with pytest.raises(FetchFailure, match="timed out"):
            await ScanlogFetcher("scanlog", timeout=0.01)(SEGMENT)

    assert proc.killed


@pytest.mark.skipif(shutil.which("false") is None, reason="needs coreutils")
@pytest.mark.asyncio
async def test_real_process_exit_code():
    with pytest.raises(FetchFailure):
        await ScanlogFetcher(shutil.which("false"))(SEGMENT)
