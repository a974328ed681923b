"""fetchguard
Retrying async fetches, rate-limit gating and IP reputation tracking
"""

__version__ = "0.1.0"

from .address import (
    AddressResolver,
    HttpAddressResolver,
    StaticAddressResolver,
    address_from_headers,
    is_valid_address,
)
from .arbiter import Arbiter, EndpointLimit, HttpArbiter, LocalArbiter
from .circuit_breaker import CircuitBreaker
from .exceptions import (
    AddressResolutionError,
    ArbiterError,
    ArbiterUnavailableError,
    CircuitOpenError,
    FetchGuardError,
    RateLimitError,
    RetriesExhaustedError,
    TransientError,
)
from .fetch_controller import AsyncFetchController
from .gate import RateLimitGate
from .models import (
    ArbiterRequest,
    AsyncDataState,
    FetchStatus,
    IPReputationRecord,
    RateLimitDecision,
    ReputationStats,
    RiskLevel,
    ViolationEvent,
    ViolationKind,
)
from .reputation import ReputationAggregator, RiskPolicy
from .storage import InMemoryReputationStore, JsonFileReputationStore, ReputationStore

__all__ = [
    "__version__",
    "AsyncFetchController",
    "RateLimitGate",
    "ReputationAggregator",
    "RiskPolicy",
    "Arbiter",
    "HttpArbiter",
    "LocalArbiter",
    "EndpointLimit",
    "CircuitBreaker",
    "AddressResolver",
    "HttpAddressResolver",
    "StaticAddressResolver",
    "address_from_headers",
    "is_valid_address",
    "ReputationStore",
    "InMemoryReputationStore",
    "JsonFileReputationStore",
    "FetchGuardError",
    "TransientError",
    "RateLimitError",
    "ArbiterError",
    "ArbiterUnavailableError",
    "AddressResolutionError",
    "CircuitOpenError",
    "RetriesExhaustedError",
    "ArbiterRequest",
    "AsyncDataState",
    "FetchStatus",
    "IPReputationRecord",
    "RateLimitDecision",
    "ReputationStats",
    "RiskLevel",
    "ViolationEvent",
    "ViolationKind",
]
