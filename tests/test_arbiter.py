from datetime import datetime, timedelta, timezone

import httpx
import pytest

from fetchguard.arbiter import EndpointLimit, HttpArbiter, LocalArbiter
from fetchguard.exceptions import ArbiterError, ArbiterUnavailableError, RateLimitError
from fetchguard.models import ArbiterRequest, RiskLevel, ViolationKind
from fetchguard.reputation import ReputationAggregator
from fetchguard.storage import InMemoryReputationStore

ADDRESS = "198.51.100.23"


def make_local(clock, limits=None):
    aggregator = ReputationAggregator(InMemoryReputationStore(), clock=clock)
    return LocalArbiter(aggregator, limits=limits), aggregator


@pytest.mark.asyncio
async def test_local_arbiter_denies_over_limit_and_reports_violation(clock):
    arbiter, aggregator = make_local(clock, {"default": EndpointLimit(60, 2)})
    request = ArbiterRequest(endpoint_id="default", address=ADDRESS)

    first = await arbiter.check(request)
    second = await arbiter.check(request)
    third = await arbiter.check(request)

    assert first.allowed and first.remaining == 1
    assert second.allowed and second.remaining == 0
    assert not third.allowed
    assert third.retry_after == 60
    record = await aggregator.get(ADDRESS)
    assert record.rate_limit_violations == 1


@pytest.mark.asyncio
async def test_local_arbiter_window_slides(clock):
    arbiter, _ = make_local(clock, {"default": EndpointLimit(60, 1)})
    request = ArbiterRequest(endpoint_id="default", address=ADDRESS)

    assert (await arbiter.check(request)).allowed
    assert not (await arbiter.check(request)).allowed

    clock.advance(seconds=61)
    decision = await arbiter.check(request)

    assert decision.allowed
    assert decision.reset_time == clock.now + timedelta(seconds=60)


@pytest.mark.asyncio
async def test_local_arbiter_denies_blocked_address(clock):
    arbiter, aggregator = make_local(clock)
    for _ in range(5):
        await aggregator.apply_violation(ADDRESS, ViolationKind.FAILED_AUTH)
    clock.advance(minutes=10)

    decision = await arbiter.check(ArbiterRequest(endpoint_id="payment", address=ADDRESS))

    assert not decision.allowed
    assert decision.retry_after == 20 * 60, "Remaining part of the 30 minute block"
    assert decision.risk_level is RiskLevel.HIGH


@pytest.mark.asyncio
async def test_local_arbiter_tightens_limit_for_risky_address(clock):
    limits = {"default": EndpointLimit(60, 10), "auth": EndpointLimit(60, 10, False)}
    arbiter, aggregator = make_local(clock, limits)
    for _ in range(3):
        await aggregator.apply_violation(ADDRESS, ViolationKind.SUSPICIOUS_PATTERN)

    default = await arbiter.check(ArbiterRequest(endpoint_id="default", address=ADDRESS))
    auth = await arbiter.check(ArbiterRequest(endpoint_id="auth", address=ADDRESS))

    assert default.risk_level is RiskLevel.MEDIUM
    assert default.remaining == 6, "Medium risk gets 75% of the limit"
    assert auth.remaining == 9, "auth endpoint ignores reputation"


@pytest.mark.asyncio
async def test_local_arbiter_unknown_endpoint_uses_default(clock):
    arbiter, _ = make_local(clock, {"default": EndpointLimit(60, 4)})

    decision = await arbiter.check(ArbiterRequest(endpoint_id="reports", address=ADDRESS))

    assert decision.remaining == 3


@pytest.mark.asyncio
async def test_local_arbiter_requires_identity_or_valid_address(clock):
    arbiter, aggregator = make_local(clock)

    with pytest.raises(ArbiterError):
        await arbiter.check(ArbiterRequest(endpoint_id="default", address="unknown"))

    decision = await arbiter.check(
        ArbiterRequest(endpoint_id="default", address="unknown", identity="user-7")
    )
    assert decision.allowed
    assert await aggregator.list_records() == [], "Sentinel addresses are never tracked"


def http_arbiter(handler):
    return HttpArbiter(url="http://arbiter.test/rate-limiter", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_http_arbiter_parses_allowed_decision():
    seen = {}

    def handler(request):
        seen["body"] = request.read()
        return httpx.Response(
            200,
            json={
                "allowed": True,
                "remaining": 14,
                "resetTime": "2026-10-19T13:00:00.000Z",
                "riskLevel": "low",
            },
        )

    decision = await http_arbiter(handler).check(
        ArbiterRequest(endpoint_id="auth", address=ADDRESS, identity="user-1")
    )

    assert decision.allowed and not decision.degraded
    assert decision.remaining == 14
    assert decision.reset_time == datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)
    assert decision.risk_level is RiskLevel.LOW
    assert b'"endpoint":"auth"' in seen["body"].replace(b" ", b"")


@pytest.mark.asyncio
async def test_http_arbiter_raises_rate_limit_on_429():
    def handler(request):
        return httpx.Response(429, json={"error": "Rate limit exceeded", "retryAfter": 3600})

    with pytest.raises(RateLimitError) as exc_info:
        await http_arbiter(handler).check(ArbiterRequest(endpoint_id="auth", address=ADDRESS))

    assert exc_info.value.retry_after == 3600


@pytest.mark.asyncio
async def test_http_arbiter_429_falls_back_to_retry_after_header():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "120"}, text="slow down")

    with pytest.raises(RateLimitError) as exc_info:
        await http_arbiter(handler).check(ArbiterRequest(endpoint_id="auth", address=ADDRESS))

    assert exc_info.value.retry_after == 120


@pytest.mark.asyncio
async def test_http_arbiter_blocked_address_is_denial():
    def handler(request):
        return httpx.Response(
            403,
            json={
                "error": "IP address blocked due to suspicious activity",
                "retryAfter": 900,
                "riskLevel": "critical",
            },
        )

    decision = await http_arbiter(handler).check(
        ArbiterRequest(endpoint_id="payment", address=ADDRESS)
    )

    assert not decision.allowed
    assert decision.retry_after == 900
    assert decision.risk_level is RiskLevel.CRITICAL


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 500, 502])
async def test_http_arbiter_errors_are_unavailable(status):
    def handler(request):
        return httpx.Response(status, json={"error": "Internal server error"})

    with pytest.raises(ArbiterUnavailableError):
        await http_arbiter(handler).check(ArbiterRequest(endpoint_id="default", address=ADDRESS))


@pytest.mark.asyncio
async def test_http_arbiter_transport_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ArbiterUnavailableError):
        await http_arbiter(handler).check(ArbiterRequest(endpoint_id="default", address=ADDRESS))
