"""Retrying fetch controller with cancellation and exponential backoff"""

import asyncio
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, TypeVar

from loguru import logger

from .config import DEFAULT_ATTEMPT_TIMEOUT, INITIAL_BACKOFF, MAX_RETRIES
from .exceptions import RetriesExhaustedError
from .models import AsyncDataState, ErrorType, FetchAttempt, FetchStatus
from .retry import backoff_delay, classify_error

T = TypeVar("T")


class AsyncFetchController(Generic[T]):
    """
    Owns the lifecycle of one asynchronous data-producing operation.

    Every cycle cancels the previous one before it starts, so at most one
    attempt is live and a slow superseded response can never overwrite a
    newer one. Failures are retried with exponential backoff; once the
    retries are used up the failure is surfaced as ``RetriesExhaustedError``.
    """

    def __init__(
        self,
        fetch_function: Callable[[], Awaitable[T]],
        *,
        retry_attempts: int = MAX_RETRIES,
        retry_delay: float = INITIAL_BACKOFF,
        enabled: bool = True,
        initial_data: Optional[T] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
        on_retry: Optional[Callable[[int, Exception, float], Any]] = None,
        attempt_timeout: Optional[float] = DEFAULT_ATTEMPT_TIMEOUT,
        dependencies: Tuple = (),
        name: str = "fetch",
    ):
        """
        Initialize fetch controller.

        Args:
            fetch_function: Zero-argument coroutine function producing the data
            retry_attempts: Maximum number of retries after the initial attempt
            retry_delay: Delay before the first retry in seconds, doubled per retry
            enabled: When False no attempt is ever made
            initial_data: Value of ``data`` before the first success
            on_error: Called once with the terminal error of an exhausted cycle
            on_retry: Called before each backoff wait: on_retry(retry, error, delay)
            attempt_timeout: Optional per-attempt timeout in seconds
            dependencies: Values whose change starts a new cycle
            name: Name for logging purposes
        """
        if retry_attempts < 0:
            raise ValueError(f"retry_attempts must be >= 0, got {retry_attempts}")

        self.fetch_function = fetch_function
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.enabled = enabled
        self.on_error = on_error
        self.on_retry = on_retry
        self.attempt_timeout = attempt_timeout
        self.name = name

        self.data: Optional[T] = initial_data
        self.loading = False
        self.error: Optional[Exception] = None
        self.is_retrying = False
        self.status = FetchStatus.IDLE
        self.retry_count = 0

        self._dependencies = tuple(dependencies)
        self._attempt: Optional[FetchAttempt] = None
        self._cycle: Optional[asyncio.Task] = None
        self._closed = False

    async def __aenter__(self):
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    @property
    def state(self) -> AsyncDataState[T]:
        return AsyncDataState(
            data=self.data,
            loading=self.loading,
            error=self.error,
            is_retrying=self.is_retrying,
            status=self.status,
            retry_count=self.retry_count,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self, is_retry: bool = False) -> Optional[asyncio.Task]:
        """Cancel any live attempt and begin a new cycle with the retry counter reset"""
        if self._closed:
            logger.debug(f"Fetch '{self.name}' is closed, ignoring start")
            return None

        self._cancel_live()
        self.retry_count = 0

        if not self.enabled:
            self._rest(FetchStatus.IDLE)
            return None

        attempt = FetchAttempt(attempt_number=0, is_retry=is_retry)
        self._attempt = attempt
        self._begin(attempt)
        attempt.task = asyncio.create_task(self._run_cycle(attempt))
        self._cycle = attempt.task
        return attempt.task

    async def refetch(self) -> None:
        """Start a fresh cycle with the retry counter reset and wait for it"""
        await self._settle(self.start())

    async def retry(self) -> None:
        """Start a fresh cycle marked as a retry, keeping the current data"""
        await self._settle(self.start(is_retry=True))

    async def wait(self) -> None:
        """Wait until the current cycle settles"""
        await self._settle(self._cycle)

    def set_dependencies(self, *dependencies) -> None:
        if tuple(dependencies) == self._dependencies:
            return
        self._dependencies = tuple(dependencies)
        logger.debug(f"Fetch '{self.name}' dependencies changed, restarting")
        self.start()

    def set_enabled(self, enabled: bool) -> None:
        if enabled == self.enabled:
            return
        self.enabled = enabled
        if enabled:
            self.start()
        else:
            self._cancel_live()
            self._rest(FetchStatus.IDLE)

    async def aclose(self) -> None:
        """Tear down: cancel the live attempt and stop mutating state"""
        if self._closed:
            return
        self._closed = True
        task = self._cycle
        self._cancel_live()
        await self._settle(task)
        logger.debug(f"Fetch '{self.name}' closed")

    async def _run_cycle(self, attempt: FetchAttempt) -> None:
        while True:
            try:
                result = await self._invoke()
            except asyncio.CancelledError:
                # Producer aborted on its own while still live
                if self._is_live(attempt):
                    self._rest(FetchStatus.IDLE)
                raise
            except Exception as e:
                if not self._is_live(attempt):
                    logger.debug(f"Fetch '{self.name}' dropped failure of superseded attempt: {e}")
                    return

                error_type = classify_error(e)
                if error_type is ErrorType.RATE_LIMIT:
                    logger.warning(f"Fetch '{self.name}' rate limited, not retrying: {e}")
                    self._fail(e)
                    return
                if self.retry_count >= self.retry_attempts:
                    self._fail(RetriesExhaustedError(e, self.retry_count + 1))
                    return

                self.retry_count += 1
                delay = backoff_delay(self.retry_count, self.retry_delay)
                self.loading = False
                self.is_retrying = True
                self.status = FetchStatus.RETRYING
                logger.warning(
                    f"Fetch '{self.name}' attempt {attempt.attempt_number + 1}/"
                    f"{self.retry_attempts + 1} failed ({error_type.value}): {e}"
                )
                logger.info(f"   Retrying in {delay:.1f}s...")

                if self.on_retry:
                    try:
                        self.on_retry(self.retry_count, e, delay)
                    except Exception:
                        logger.exception(f"Fetch '{self.name}' on_retry callback raised")

                # Not cancellable on its own; a superseded cycle is cancelled here
                await asyncio.sleep(delay)
                if not self._is_live(attempt):
                    return

                attempt = FetchAttempt(
                    attempt_number=self.retry_count, is_retry=True, task=attempt.task
                )
                self._attempt = attempt
                self._begin(attempt)
                continue

            if not self._is_live(attempt):
                logger.debug(f"Fetch '{self.name}' dropped result of superseded attempt")
                return

            if attempt.attempt_number > 0:
                logger.success(f"✓ Fetch '{self.name}' recovered after {attempt.attempt_number} retries")
            self.data = result
            self.retry_count = 0
            self._rest(FetchStatus.SUCCEEDED)
            return

    async def _invoke(self) -> T:
        if self.attempt_timeout is None:
            return await self.fetch_function()
        return await asyncio.wait_for(self.fetch_function(), timeout=self.attempt_timeout)

    def _begin(self, attempt: FetchAttempt) -> None:
        self.error = None
        if attempt.is_retry or attempt.attempt_number > 0:
            self.loading = False
            self.is_retrying = True
            self.status = FetchStatus.RETRYING
        else:
            self.loading = True
            self.is_retrying = False
            self.status = FetchStatus.LOADING
        logger.debug(f"Fetch '{self.name}' attempt {attempt.attempt_number} started")

    def _rest(self, status: FetchStatus) -> None:
        self.loading = False
        self.is_retrying = False
        self.status = status

    def _fail(self, error: Exception) -> None:
        self.error = error
        self._rest(FetchStatus.FAILED)
        logger.error(f"❌ Fetch '{self.name}' failed: {error}")
        if self.on_error:
            try:
                self.on_error(error)
            except Exception:
                logger.exception(f"Fetch '{self.name}' on_error callback raised")

    def _is_live(self, attempt: FetchAttempt) -> bool:
        return not self._closed and attempt is self._attempt and not attempt.cancelled

    def _cancel_live(self) -> None:
        if self._attempt is not None:
            self._attempt.cancel()

    @staticmethod
    async def _settle(task: Optional[asyncio.Task]) -> None:
        if task is not None:
            await asyncio.wait({task})
