"""Arbiters deciding whether a guarded request may proceed"""

import asyncio
import math
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, Mapping, Optional, Tuple

import httpx
from dateutil.parser import isoparse
from loguru import logger

from .address import is_valid_address
from .config import (
    ARBITER_URL,
    DEFAULT_REQUEST_TIMEOUT,
    ENDPOINT_LIMITS,
    RISK_LIMIT_ADJUSTMENTS,
)
from .exceptions import ArbiterError, ArbiterUnavailableError, RateLimitError
from .models import (
    ArbiterRequest,
    IPReputationRecord,
    RateLimitDecision,
    RiskLevel,
    ViolationKind,
)
from .reputation import ReputationAggregator


class Arbiter:
    """
    Decides whether ``(endpoint, identity, address)`` may proceed.

    ``check`` returns a decision, or raises when the arbiter itself failed.
    A ``RateLimitError`` means the transport reported an explicit throttle.
    """

    async def check(self, request: ArbiterRequest) -> RateLimitDecision:
        raise NotImplementedError


def _risk_level(value: Any) -> Optional[RiskLevel]:
    try:
        return RiskLevel(value) if value else None
    except ValueError:
        return None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


class HttpArbiter(Arbiter):
    """
    Remote arbiter reached over HTTP.

    Sends ``{"endpoint", "userId", "ipAddress"}`` and understands three answers:
    200 with a decision body, 429 when throttled, and 403 with ``retryAfter``
    when the address is blocked.
    """

    def __init__(
        self,
        url: str = ARBITER_URL,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        headers: Optional[Mapping[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self.transport = transport

    async def check(self, request: ArbiterRequest) -> RateLimitDecision:
        payload = {
            "endpoint": request.endpoint_id,
            "userId": request.identity,
            "ipAddress": request.address,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=self.headers, transport=self.transport
            ) as client:
                response = await client.post(self.url, json=payload)
        except httpx.HTTPError as e:
            raise ArbiterUnavailableError(f"Arbiter unreachable: {e}") from e

        body = self._json(response)

        if response.status_code == 429:
            retry_after = _int_or_none(body.get("retryAfter"))
            if retry_after is None:
                retry_after = _int_or_none(response.headers.get("Retry-After"))
            raise RateLimitError(body.get("error", "Rate limit exceeded"), retry_after=retry_after)

        if response.status_code == 403 and body.get("retryAfter") is not None:
            return RateLimitDecision(
                allowed=False,
                retry_after=_int_or_none(body.get("retryAfter")),
                reason=body.get("error", "Address blocked"),
                risk_level=_risk_level(body.get("riskLevel")),
            )

        if response.status_code != 200 or "allowed" not in body:
            raise ArbiterUnavailableError(
                f"Arbiter returned HTTP {response.status_code}: {body.get('error', 'no decision')}"
            )

        reset_time = body.get("resetTime")
        return RateLimitDecision(
            allowed=bool(body["allowed"]),
            remaining=_int_or_none(body.get("remaining")),
            reset_time=isoparse(reset_time) if reset_time else None,
            retry_after=_int_or_none(body.get("retryAfter")),
            reason=body.get("error"),
            risk_level=_risk_level(body.get("riskLevel")),
        )

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}


@dataclass(frozen=True)
class EndpointLimit:
    """Sliding-window quota for one endpoint"""

    window_seconds: float
    max_requests: int
    adjust_for_reputation: bool = True


DEFAULT_ENDPOINT_LIMITS: Dict[str, EndpointLimit] = {
    name: EndpointLimit(*values) for name, values in ENDPOINT_LIMITS.items()
}


class LocalArbiter(Arbiter):
    """
    In-process arbiter backed by the reputation aggregator.

    Blocked addresses are denied outright. Otherwise each
    (endpoint, identity-or-address) pair gets a sliding window whose size
    shrinks with the address's risk tier; going over it is reported back to
    the aggregator as a rate-limit violation.
    """

    def __init__(
        self,
        aggregator: ReputationAggregator,
        limits: Optional[Mapping[str, EndpointLimit]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.aggregator = aggregator
        self.limits = dict(limits or DEFAULT_ENDPOINT_LIMITS)
        self.clock = clock or aggregator.clock
        self._windows: Dict[Tuple[str, str], Deque[datetime]] = defaultdict(deque)
        self.lock = asyncio.Lock()

    def limit_for(self, endpoint_id: str) -> EndpointLimit:
        return (
            self.limits.get(endpoint_id)
            or self.limits.get("default")
            or DEFAULT_ENDPOINT_LIMITS["default"]
        )

    async def check(self, request: ArbiterRequest) -> RateLimitDecision:
        address = request.address if is_valid_address(request.address) else None
        identifier = request.identity or address
        if not identifier:
            raise ArbiterError("Either identity or a valid address is required")

        limit = self.limit_for(request.endpoint_id)
        record = await self.aggregator.get(address) if address else None
        risk_level = record.risk_level if record else None
        now = self.clock()

        if record is not None and record.is_blocked(now):
            retry_after = math.ceil((record.blocked_until - now).total_seconds())
            logger.warning(f"Address {address} is blocked until {record.blocked_until.isoformat()}")
            return RateLimitDecision(
                allowed=False,
                retry_after=retry_after,
                reason="Address blocked due to suspicious activity",
                risk_level=risk_level,
            )

        max_requests = self._adjusted_limit(limit, record)
        cutoff = now - timedelta(seconds=limit.window_seconds)

        async with self.lock:
            window = self._windows[(request.endpoint_id, identifier)]
            while window and window[0] <= cutoff:
                window.popleft()
            exceeded = len(window) >= max_requests
            if not exceeded:
                window.append(now)
            remaining = max_requests - len(window)

        if exceeded:
            logger.warning(
                f"Rate limit exceeded for {identifier} on '{request.endpoint_id}' "
                f"({max_requests} per {limit.window_seconds:.0f}s)"
            )
            if address:
                record = await self.aggregator.apply_violation(
                    address, ViolationKind.RATE_LIMIT_VIOLATION
                )
                risk_level = record.risk_level
            return RateLimitDecision(
                allowed=False,
                retry_after=math.ceil(limit.window_seconds),
                reason="Rate limit exceeded",
                risk_level=risk_level,
            )

        return RateLimitDecision(
            allowed=True,
            remaining=remaining,
            reset_time=now + timedelta(seconds=limit.window_seconds),
            risk_level=risk_level,
        )

    @staticmethod
    def _adjusted_limit(limit: EndpointLimit, record: Optional[IPReputationRecord]) -> int:
        if not limit.adjust_for_reputation or record is None:
            return limit.max_requests
        adjustment = RISK_LIMIT_ADJUSTMENTS.get(record.risk_level.value)
        if adjustment is None:
            return limit.max_requests
        factor, floor = adjustment
        return min(limit.max_requests, max(floor, math.floor(limit.max_requests * factor)))
