"""Rate-limit gate guarding sensitive operations"""

from typing import Any, Awaitable, Callable, Optional, TypeVar

from loguru import logger

from .address import AddressResolver
from .arbiter import Arbiter
from .circuit_breaker import CircuitBreaker
from .config import DEFAULT_RETRY_AFTER, UNKNOWN_ADDRESS
from .exceptions import CircuitOpenError
from .models import ArbiterRequest, RateLimitDecision
from .retry import is_rate_limited

T = TypeVar("T")

ARBITER_UNAVAILABLE = "Rate limiter service unavailable"


class RateLimitGate:
    """
    Consults an arbiter before letting a guarded operation run.

    Availability wins over strict enforcement: when the arbiter cannot answer
    the operation still runs and the decision is flagged ``degraded``. Only an
    explicit denial (a decision with ``allowed=False`` or a 429 from the
    transport) stops it. The gate never retries the operation itself.
    """

    def __init__(
        self,
        arbiter: Arbiter,
        address_resolver: Optional[AddressResolver] = None,
        identity: Optional[str] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Initialize rate-limit gate.

        Args:
            arbiter: Decision service to consult
            address_resolver: Used when no explicit address is supplied
            identity: Caller identity (e.g. user id) sent with every check
            circuit_breaker: Optional breaker around the arbiter call
        """
        self.arbiter = arbiter
        self.address_resolver = address_resolver
        self.identity = identity
        self.circuit_breaker = circuit_breaker
        self.last_decision: Optional[RateLimitDecision] = None

    async def resolve_address(self, address: Optional[str] = None) -> str:
        if address:
            return address
        if self.address_resolver is None:
            return UNKNOWN_ADDRESS
        try:
            resolved = await self.address_resolver.resolve()
        except Exception as e:
            logger.warning(f"Could not determine client address: {e}")
            return UNKNOWN_ADDRESS
        return resolved or UNKNOWN_ADDRESS

    async def check_rate_limit(
        self, endpoint_id: str, address: Optional[str] = None
    ) -> RateLimitDecision:
        """Ask the arbiter about ``endpoint_id``; never raises for arbiter failures"""
        request = ArbiterRequest(
            endpoint_id=endpoint_id,
            address=await self.resolve_address(address),
            identity=self.identity,
        )

        try:
            if self.circuit_breaker is not None:
                decision = await self.circuit_breaker.call(self.arbiter.check, request)
            else:
                decision = await self.arbiter.check(request)
        except CircuitOpenError as e:
            logger.warning(f"Skipping arbiter, allowing request: {e}")
            decision = RateLimitDecision.fail_open(ARBITER_UNAVAILABLE)
        except Exception as e:
            if is_rate_limited(e):
                retry_after = getattr(e, "retry_after", None) or DEFAULT_RETRY_AFTER
                decision = RateLimitDecision.denied(retry_after)
            else:
                logger.warning(f"Rate limit check failed, allowing request: {e}")
                decision = RateLimitDecision.fail_open(ARBITER_UNAVAILABLE)

        self.last_decision = decision
        return decision

    async def check_and_run(
        self,
        endpoint_id: str,
        operation: Callable[[], Awaitable[T]],
        *,
        address: Optional[str] = None,
        on_rate_limited: Optional[Callable[[RateLimitDecision], Any]] = None,
        on_degraded: Optional[Callable[[RateLimitDecision], Any]] = None,
    ) -> Optional[T]:
        """
        Run ``operation`` if the arbiter permits it.

        Returns:
            The operation's result, or None when the request was denied
        """
        decision = await self.check_rate_limit(endpoint_id, address)

        if not decision.allowed:
            logger.warning(
                f"Request to '{endpoint_id}' rate limited, retry after {decision.retry_after}s"
            )
            if on_rate_limited:
                on_rate_limited(decision)
            return None

        if decision.degraded and on_degraded:
            on_degraded(decision)

        return await operation()
