from dataclasses import dataclass
from typing import Optional

from .errors import InvalidInvocation

DEFAULT_USER_AGENT = "CT-Wrangler/0.1.0"


@dataclass(frozen=True)
class WranglerConfig:
    """Configuration for one synchronization pass."""

    stride: int = 20_000  # entries per fetch segment
    batch_size: int = 100  # entries per get-entries request issued by scanlog
    parallel_fetch: int = 4
    dump_full_chain: bool = False
    sth_timeout: float = 30.0
    fetch_timeout: Optional[float] = 4 * 3600.0  # None waits forever
    max_retries: int = 5
    retry_delay: float = 1.0
    max_retry_delay: float = 30.0
    user_agent: str = DEFAULT_USER_AGENT

    def validate(self) -> None:
        if self.stride < 1:
            raise InvalidInvocation(f"stride must be positive, got {self.stride}")
        if self.batch_size < 1:
            raise InvalidInvocation(f"batch_size must be positive, got {self.batch_size}")
        if self.parallel_fetch < 1:
            raise InvalidInvocation(
                f"parallel_fetch must be positive, got {self.parallel_fetch}"
            )
        if self.max_retries < 0:
            raise InvalidInvocation(f"max_retries must not be negative, got {self.max_retries}")
        if self.fetch_timeout is not None and self.fetch_timeout <= 0:
            raise InvalidInvocation(f"fetch_timeout must be positive, got {self.fetch_timeout}")
