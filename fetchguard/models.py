"""Data models and enums for fetchguard"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states"""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if recovered


class ErrorType(Enum):
    """Error categories for different handling strategies"""

    TRANSIENT = "transient"  # Retry with backoff
    RATE_LIMIT = "rate_limit"  # Surface immediately, never retry
    CANCELLED = "cancelled"  # Superseded attempt, swallow
    PERMANENT = "permanent"  # Retry within the bound, then surface


class FetchStatus(Enum):
    """States of the retrying fetch controller"""

    IDLE = "idle"
    LOADING = "loading"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class RiskLevel(Enum):
    """Risk tiers, ordered from least to most severe"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)

    def __lt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, RiskLevel):
            return NotImplemented
        return self.rank >= other.rank


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


class ViolationKind(Enum):
    """Abuse signals reported against a network address"""

    FAILED_AUTH = "failed_auth"
    RATE_LIMIT_VIOLATION = "rate_limit_violation"
    SUSPICIOUS_PATTERN = "suspicious_pattern"


@dataclass
class FetchAttempt:
    """One try of a fetch cycle; cancelling it cancels the task running it"""

    attempt_number: int = 0  # 0 = initial, >0 = retry
    is_retry: bool = False
    task: Optional["asyncio.Task"] = None
    _cancelled: bool = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self.task is not None and not self.task.done():
            self.task.cancel()


@dataclass
class AsyncDataState(Generic[T]):
    """Snapshot of a fetch controller's observable state"""

    data: Optional[T] = None
    loading: bool = False
    error: Optional[Exception] = None
    is_retrying: bool = False
    status: FetchStatus = FetchStatus.IDLE
    retry_count: int = 0


@dataclass
class RateLimitDecision:
    """Outcome of one arbiter consultation"""

    allowed: bool
    remaining: Optional[int] = None
    reset_time: Optional[datetime] = None
    retry_after: Optional[int] = None  # Seconds, only set when denied
    degraded: bool = False  # Produced by the fail-open fallback
    reason: Optional[str] = None
    risk_level: Optional[RiskLevel] = None

    @classmethod
    def fail_open(cls, reason: str) -> "RateLimitDecision":
        return cls(allowed=True, degraded=True, reason=reason)

    @classmethod
    def denied(cls, retry_after: Optional[int], reason: str = "Rate limit exceeded") -> "RateLimitDecision":
        return cls(allowed=False, retry_after=retry_after, reason=reason)


@dataclass(frozen=True)
class ArbiterRequest:
    """What the gate asks the arbiter about"""

    endpoint_id: str
    address: str
    identity: Optional[str] = None


@dataclass(frozen=True)
class ViolationEvent:
    """A single abuse signal for an address"""

    address: str
    kind: ViolationKind


@dataclass
class IPReputationRecord:
    """Accumulated violations for one network address"""

    address: str
    failed_auth_attempts: int = 0
    rate_limit_violations: int = 0
    suspicious_patterns: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    blocked_until: Optional[datetime] = None
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    last_violation_at: Optional[datetime] = None

    @property
    def total_violations(self) -> int:
        return self.failed_auth_attempts + self.rate_limit_violations + self.suspicious_patterns

    def is_blocked(self, now: datetime) -> bool:
        return self.blocked_until is not None and self.blocked_until > now

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "failed_auth_attempts": self.failed_auth_attempts,
            "rate_limit_violations": self.rate_limit_violations,
            "suspicious_patterns": self.suspicious_patterns,
            "risk_level": self.risk_level.value,
            "blocked_until": self.blocked_until,
            "first_seen_at": self.first_seen_at,
            "last_seen_at": self.last_seen_at,
            "last_violation_at": self.last_violation_at,
        }


@dataclass
class ReputationStats:
    """Dashboard aggregate over every tracked address"""

    total_addresses: int = 0
    blocked: int = 0
    high_risk: int = 0  # High and critical together
    critical: int = 0
    total_violations: int = 0
    risk_distribution: Dict[RiskLevel, int] = field(
        default_factory=lambda: {level: 0 for level in RiskLevel}
    )
