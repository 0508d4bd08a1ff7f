"""
Per-log checkpoint and artifact storage.

Layout under the storage root::

    <root>/<log_id>/        one artifact file per fetched entry
    <root>/<log_id>.json    checkpoint
    <root>/<log_id>.lock    single-flight lock
"""

import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from .client import SignedTreeHead
from .errors import IntegrityViolation, InvalidInvocation, LogBusy, NetworkFailure

logger = logging.getLogger(__name__)


@dataclass
class Checkpoint:
    """Durable fetch progress for one log."""

    next_index: int = 0  # next entry offset to fetch
    last_sth: Optional[SignedTreeHead] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "next_index": self.next_index,
            "last_sth": self.last_sth.to_dict() if self.last_sth else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        if not isinstance(data, dict):
            raise IntegrityViolation(f"Checkpoint must be an object, got {type(data).__name__}")
        # Older checkpoints stored the offset as "idx"
        next_index = data.get("next_index", data.get("idx", 0))
        if not isinstance(next_index, int) or isinstance(next_index, bool) or next_index < 0:
            raise IntegrityViolation(f"Checkpoint has invalid next_index {next_index!r}")

        last_sth = None
        if data.get("last_sth") is not None:
            try:
                last_sth = SignedTreeHead.from_dict(data["last_sth"])
            except NetworkFailure as e:
                raise IntegrityViolation(f"Checkpoint has invalid last_sth: {e}") from e
            if next_index > last_sth.tree_size:
                raise IntegrityViolation(
                    f"Checkpoint next_index {next_index} is beyond recorded "
                    f"tree size {last_sth.tree_size}"
                )
        return cls(next_index=next_index, last_sth=last_sth)


def validate_log_id(log_id: str) -> str:
    """Reject IDs that cannot name a file inside the storage root."""
    if not log_id or log_id in (".", "..") or "/" in log_id or os.sep in log_id or "\0" in log_id:
        raise InvalidInvocation(f"Invalid log id {log_id!r}")
    return log_id


class CheckpointStore:
    """Checkpoint file, artifact directory and lock for one log"""

    def __init__(self, storage_path: Union[str, Path], log_id: str):
        self.root = Path(storage_path)
        self.log_id = validate_log_id(log_id)
        self.entries_dir = self.root / log_id
        self.checkpoint_path = self.root / f"{log_id}.json"
        self.lock_path = self.root / f"{log_id}.lock"

    def ensure_dirs(self) -> None:
        self.entries_dir.mkdir(parents=True, exist_ok=True)

    def load(self) -> Optional[Checkpoint]:
        """Load the checkpoint, or None if this log was never wrangled."""
        if not self.checkpoint_path.exists():
            return None
        try:
            with open(self.checkpoint_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise IntegrityViolation(
                f"Checkpoint {self.checkpoint_path} is unreadable: {e}"
            ) from e
        return Checkpoint.from_dict(data)

    def save(self, checkpoint: Checkpoint) -> None:
        """Atomically write the checkpoint to disk (tmp + fsync + rename)."""
        self.root.mkdir(parents=True, exist_ok=True)
        tmp_fd, tmp_path = tempfile.mkstemp(
            dir=str(self.root), prefix=f".{self.log_id}.", suffix=".tmp",
        )
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                json.dump(checkpoint.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.checkpoint_path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        # the rename is only durable once the directory entry is flushed
        dir_fd = os.open(self.root, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)
        logger.debug(f"Saved checkpoint for {self.log_id}: {checkpoint.to_dict()}")

    def count_artifacts(self) -> int:
        """Number of entry files materialized for this log."""
        if not self.entries_dir.exists():
            return 0
        with os.scandir(self.entries_dir) as it:
            return sum(1 for entry in it if entry.is_file())

    @contextmanager
    def lock(self) -> Iterator[None]:
        """Hold the per-log lock; released by the OS if the process dies."""
        self.root.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as fh:
            try:
                fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError as e:
                raise LogBusy(f"Log {self.log_id} is being wrangled by another process") from e
            try:
                yield
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
