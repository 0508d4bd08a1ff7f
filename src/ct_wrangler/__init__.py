"""
Certificate Transparency Log Wrangler
Classifies which CT logs are worth mirroring and incrementally mirrors their
entries with resumable, checkpointed, integrity-checked fetch segments.
"""

import logging

from .checkpoint import Checkpoint, CheckpointStore
from .client import LogClient, SignedTreeHead, TiledCheckpoint
from .config import WranglerConfig
from .currency import (
    BR_VALIDITY_SCHEDULE,
    DEFAULT_POLICY,
    MaxValidityPolicy,
    ScheduledValidityPolicy,
    TreeSizeReport,
    classify,
    could_hold_unexpired,
    is_current,
    survey_tree_sizes,
)
from .errors import (
    CatalogError,
    ConsistencyViolation,
    FetchFailure,
    IntegrityViolation,
    InvalidInvocation,
    LogBusy,
    NetworkFailure,
    WranglerError,
)
from .fetcher import FetchSegment, ScanlogFetcher
from .httpx_backoff import BackoffTransport
from .log_list import (
    LOG_LIST_URL,
    LogDescriptor,
    LogLifecycle,
    LogList,
    TemporalInterval,
    fetch_log_list,
    load_log_list,
)
from .wrangler import SegmentStats, SegmentWrangler, WrangleResult, WrangleState, run

__version__ = "0.1.0"

# Create package logger
logger = logging.getLogger(__name__)

__all__ = [
    "BR_VALIDITY_SCHEDULE",
    "BackoffTransport",
    "CatalogError",
    "Checkpoint",
    "CheckpointStore",
    "ConsistencyViolation",
    "DEFAULT_POLICY",
    "FetchFailure",
    "FetchSegment",
    "IntegrityViolation",
    "InvalidInvocation",
    "LOG_LIST_URL",
    "LogBusy",
    "LogClient",
    "LogDescriptor",
    "LogLifecycle",
    "LogList",
    "MaxValidityPolicy",
    "NetworkFailure",
    "ScanlogFetcher",
    "ScheduledValidityPolicy",
    "SegmentStats",
    "SegmentWrangler",
    "SignedTreeHead",
    "TemporalInterval",
    "TiledCheckpoint",
    "TreeSizeReport",
    "WrangleResult",
    "WrangleState",
    "WranglerConfig",
    "WranglerError",
    "classify",
    "could_hold_unexpired",
    "fetch_log_list",
    "is_current",
    "load_log_list",
    "run",
    "survey_tree_sizes",
]
