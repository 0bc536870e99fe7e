"""Policy configuration and enforcement helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from nativedeps.errors import PolicyError, ValidationError

NetworkMode = Literal["online", "offline"]


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How often a failed download is attempted and how long to wait between tries.

    ``attempts=1`` means a single try with no retry.
    """

    attempts: int = 1
    backoff_seconds: float = 1.0
    multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValidationError("RetryPolicy.attempts must be at least 1.")
        if self.backoff_seconds < 0 or self.multiplier < 1:
            raise ValidationError(
                "RetryPolicy backoff must be non-negative with a multiplier of at least 1.",
            )

    def delay(self, retry_index: int) -> float:
        """Seconds to wait before retry number *retry_index* (zero-based)."""
        return self.backoff_seconds * (self.multiplier**retry_index)


@dataclass(frozen=True, slots=True)
class Policy:
    network_mode: NetworkMode = "online"
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    require_integrity: bool = False


def ensure_network_allowed(*, policy: Policy, operation: str, target: str) -> None:
    if policy.network_mode == "offline":
        raise PolicyError(
            "Network operations are disabled by policy.",
            hint="Place the archive in the workspace or switch to online mode.",
            context={"operation": operation, "target": target},
        )
