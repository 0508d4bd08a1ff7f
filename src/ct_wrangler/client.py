"""Size queries against classic and tiled CT logs."""

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import httpx

from .config import DEFAULT_USER_AGENT
from .errors import NetworkFailure
from .httpx_backoff import BackoffTransport

logger = logging.getLogger(__name__)


def _require_count(data: Dict[str, Any], key: str) -> int:
    value = data.get(key)
    # bool is an int subclass; a log answering true is still malformed
    if not isinstance(value, int) or isinstance(value, bool) or value < 0:
        raise NetworkFailure(f"Malformed STH: {key}={value!r}")
    return value


@dataclass(frozen=True)
class SignedTreeHead:
    """Signed Tree Head from a classic CT log (signature is carried, not verified)"""

    tree_size: int
    timestamp: int
    sha256_root_hash: str = ""
    tree_head_signature: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> "SignedTreeHead":
        if not isinstance(data, dict):
            raise NetworkFailure(f"Malformed STH: expected an object, got {type(data).__name__}")
        return cls(
            tree_size=_require_count(data, "tree_size"),
            timestamp=_require_count(data, "timestamp"),
            sha256_root_hash=str(data.get("sha256_root_hash", "")),
            tree_head_signature=str(data.get("tree_head_signature", "")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TiledCheckpoint:
    """Checkpoint information from a tiled CT log"""

    origin: str
    size: int
    hash: str


class LogClient:
    """Client for the size endpoints of one CT log"""

    DEFAULT_USER_AGENT = DEFAULT_USER_AGENT

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        kind: str = "classic",
    ):
        self.url = url
        self.kind = kind
        self.timeout = timeout
        self.user_agent = user_agent or self.DEFAULT_USER_AGENT
        try:
            self._client = httpx.AsyncClient(
                base_url=url,
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=transport or BackoffTransport(),
            )
        except httpx.InvalidURL as e:
            raise NetworkFailure(f"Invalid log URL {url!r}: {e}") from e

    async def __aenter__(self):
        """Async context manager entry"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.close()

    async def close(self):
        """Close the HTTP client"""
        await self._client.aclose()

    async def _get(self, path: str) -> httpx.Response:
        try:
            response = await self._client.get(path)
            response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # Strip verbose httpx error info
            err_msg = str(e).split("\n")[0]
            raise NetworkFailure(f"GET {path} on {self.url} failed: {err_msg}") from e
        return response

    async def get_sth(self) -> SignedTreeHead:
        """Get Signed Tree Head"""
        response = await self._get("/ct/v1/get-sth")
        try:
            data = response.json()
        except ValueError as e:
            raise NetworkFailure(f"STH from {self.url} is not valid JSON") from e
        return SignedTreeHead.from_dict(data)

    async def fetch_checkpoint(self) -> TiledCheckpoint:
        """Fetch the checkpoint from a tiled CT log"""
        response = await self._get("/checkpoint")

        lines = response.text.strip().split("\n")
        if len(lines) < 3:
            raise NetworkFailure(
                f"Invalid checkpoint format: expected at least 3 lines, got {len(lines)}"
            )
        try:
            size = int(lines[1])
        except ValueError as e:
            raise NetworkFailure(f"Invalid checkpoint size {lines[1]!r}") from e
        if size < 0:
            raise NetworkFailure(f"Invalid checkpoint size {size}")

        return TiledCheckpoint(origin=lines[0], size=size, hash=lines[2])

    async def fetch_tree_size(self) -> int:
        """Fetch the current tree size (number of entries in the log)"""
        if self.kind == "tiled":
            checkpoint = await self.fetch_checkpoint()
            return checkpoint.size
        sth = await self.get_sth()
        return sth.tree_size
