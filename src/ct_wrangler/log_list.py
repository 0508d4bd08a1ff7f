"""
CT log catalog.

Models the published v3 log list (operators, their classic and tiled logs,
lifecycle states and temporal intervals) and loads it from a file or URL.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union, cast

import httpx

from .config import DEFAULT_USER_AGENT
from .errors import CatalogError

logger = logging.getLogger(__name__)
LOG_LIST_URL = "https://www.gstatic.com/ct/log_list/v3/log_list.json"

# Lifecycle states from the log list schema. Only readonly and retired carry
# a timestamp that matters for currency.
USABLE = "usable"
QUALIFIED = "qualified"
PENDING = "pending"
READONLY = "readonly"
RETIRED = "retired"
REJECTED = "rejected"
KNOWN_STATES = (USABLE, QUALIFIED, PENDING, READONLY, RETIRED, REJECTED)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp from the log list into an aware datetime."""
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise CatalogError(f"Invalid timestamp in log list: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class TemporalInterval:
    """Range of certificate expiry dates a sharded log accepts"""

    start_inclusive: datetime
    end_exclusive: datetime


@dataclass(frozen=True)
class LogLifecycle:
    """Operator lifecycle state of a log"""

    name: str
    since: Optional[datetime] = None
    final_tree_size: Optional[int] = None

    @property
    def is_retired(self) -> bool:
        return self.name == RETIRED

    @property
    def is_readonly(self) -> bool:
        return self.name == READONLY

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "LogLifecycle":
        if not data:
            # Logs without a state are freshly announced; treat them as active.
            return cls(name=PENDING)
        if len(data) != 1:
            raise CatalogError(f"Expected exactly one log state, got {sorted(data)}")
        name, details = next(iter(data.items()))
        if name not in KNOWN_STATES:
            logger.warning(f"Unknown log state {name!r}, treating it as active")
        details = details or {}
        since = parse_timestamp(details["timestamp"]) if "timestamp" in details else None
        final_tree_head = details.get("final_tree_head") or {}
        return cls(
            name=name,
            since=since,
            final_tree_size=final_tree_head.get("tree_size"),
        )


@dataclass(frozen=True)
class LogDescriptor:
    """One CT log from the catalog"""

    description: str
    log_id: str
    url: str
    state: LogLifecycle
    operator: str = ""
    kind: str = "classic"  # "classic" (get-sth API) or "tiled" (checkpoint)
    mmd: int = 86400
    key: str = ""
    temporal_interval: Optional[TemporalInterval] = None

    @classmethod
    def from_dict(
        cls, data: Dict[str, Any], operator: str = "", kind: str = "classic"
    ) -> "LogDescriptor":
        url_key = "monitoring_url" if kind == "tiled" else "url"
        try:
            url = data[url_key]
            log_id = data["log_id"]
        except KeyError as e:
            raise CatalogError(f"Log entry is missing {e.args[0]!r}") from e

        interval = None
        raw_interval = data.get("temporal_interval")
        if raw_interval:
            interval = TemporalInterval(
                start_inclusive=parse_timestamp(raw_interval.get("start_inclusive")),
                end_exclusive=parse_timestamp(raw_interval.get("end_exclusive")),
            )

        return cls(
            description=data.get("description", ""),
            log_id=log_id,
            url=url,
            state=LogLifecycle.from_dict(data.get("state")),
            operator=operator,
            kind=kind,
            mmd=data.get("mmd", 86400),
            key=data.get("key", ""),
            temporal_interval=interval,
        )


@dataclass
class LogOperator:
    name: str
    email: List[str] = field(default_factory=list)
    logs: List[LogDescriptor] = field(default_factory=list)


@dataclass
class LogList:
    """The published registry of CT logs"""

    version: str = ""
    log_list_timestamp: str = ""
    operators: List[LogOperator] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogList":
        if not isinstance(data, dict) or "operators" not in data:
            raise CatalogError("Log list has no 'operators' section")

        operators: List[LogOperator] = []
        for op in data["operators"]:
            name = op.get("name", "Unknown")
            logs = [LogDescriptor.from_dict(log, name) for log in op.get("logs", [])]
            logs.extend(
                LogDescriptor.from_dict(log, name, kind="tiled")
                for log in op.get("tiled_logs", [])
            )
            operators.append(LogOperator(name=name, email=op.get("email", []), logs=logs))

        return cls(
            version=data.get("version", ""),
            log_list_timestamp=data.get("log_list_timestamp", ""),
            operators=operators,
        )

    def logs(self) -> Iterator[LogDescriptor]:
        """All logs run by all operators."""
        for op in self.operators:
            yield from op.logs


def load_log_list(path: Union[str, Path]) -> LogList:
    """Load a log list from a local JSON file."""
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"Cannot read log list {path}: {e}") from e
    return LogList.from_dict(data)


async def fetch_log_list(
    url: str = LOG_LIST_URL,
    user_agent: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = 10.0,
) -> LogList:
    """Download and parse the published log list."""
    headers = {"User-Agent": user_agent or DEFAULT_USER_AGENT}
    try:
        async with httpx.AsyncClient(headers=headers, transport=transport) as client:
            response = await client.get(url, timeout=timeout)
            response.raise_for_status()
            data = cast(Dict[str, Any], response.json())
    except (httpx.HTTPError, ValueError) as e:
        raise CatalogError(f"Cannot fetch log list from {url}: {e}") from e
    return LogList.from_dict(data)
