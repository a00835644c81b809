"""Retry and recovery engine for arbitrary async operations.

Wraps a caller-supplied coroutine factory with classified retries (driven by
tenacity), cancellable waits, an overall deadline and an abort event, plus
sequential fallbacks for ``execute_with_recovery``.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Sequence, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
    wait_incrementing,
)
from tenacity.wait import wait_base

from inferencemesh.domain.enums import RetryStrategy
from inferencemesh.domain.exceptions import OperationAbortedError, RecoveryFailedError
from inferencemesh.shared.observability.metrics import FALLBACK_INVOCATIONS, RETRY_ATTEMPTS
from inferencemesh.shared.providers.classifier import ErrorClassifier
from inferencemesh.shared.providers.metrics import ProviderMetricsCollector
from inferencemesh.shared.providers.types import (
    ErrorClassification,
    PerformanceStats,
    ProviderMetricsSample,
    RetryPolicy,
    RetryResult,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
ErrorCallback = Callable[[ErrorClassification, int], Any]


class _AttemptFailed(Exception):
    """Carries a classified operation failure through tenacity."""

    def __init__(self, error: Exception, classification: ErrorClassification) -> None:
        super().__init__(str(error))
        self.error = error
        self.classification = classification


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, _AttemptFailed) and exc.classification.is_retryable


def build_wait(policy: RetryPolicy) -> wait_base:
    """Tenacity wait strategy for a policy's backoff curve."""
    if policy.strategy == RetryStrategy.CONSTANT:
        base: wait_base = wait_fixed(min(policy.initial_delay_s, policy.max_delay_s))
    elif policy.strategy == RetryStrategy.LINEAR:
        base = wait_incrementing(
            start=policy.initial_delay_s,
            increment=policy.initial_delay_s,
            max=policy.max_delay_s,
        )
    else:
        base = wait_exponential(multiplier=policy.initial_delay_s, max=policy.max_delay_s)

    if policy.respect_suggested_wait:
        return _wait_at_least_suggested(base, policy.max_delay_s)
    return base


class _wait_at_least_suggested(wait_base):
    """Never wait less than the classification's suggested wait."""

    def __init__(self, base: wait_base, max_delay_s: float) -> None:
        self._base = base
        self._max = max_delay_s

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._base(retry_state)
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, _AttemptFailed):
            delay = max(delay, exc.classification.suggested_wait_s)
        return min(delay, self._max)


class _Run:
    """Per-call state: attempt count, accumulated delay, abort and deadline."""

    def __init__(self, abort: asyncio.Event | None, timeout_s: float | None) -> None:
        self.abort = abort
        self.loop = asyncio.get_running_loop()
        self.deadline = self.loop.time() + timeout_s if timeout_s is not None else None
        self.attempts = 0
        self.total_delay_s = 0.0

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.loop.time())

    def check(self) -> None:
        if self.abort is not None and self.abort.is_set():
            raise OperationAbortedError()
        if self.deadline is not None and self.loop.time() >= self.deadline:
            raise OperationAbortedError("Operation timed out")

    async def sleep(self, delay: float) -> None:
        """Cancellable wait that trips on abort or deadline."""
        self.check()
        remaining = self.remaining()
        crosses_deadline = remaining is not None and delay >= remaining
        timeout = remaining if crosses_deadline else delay
        started = self.loop.time()
        try:
            if self.abort is not None:
                try:
                    await asyncio.wait_for(self.abort.wait(), timeout=timeout)
                except asyncio.TimeoutError:
                    pass
            else:
                await asyncio.sleep(timeout)
        finally:
            self.total_delay_s += self.loop.time() - started
        self.check()
        if crosses_deadline:
            raise OperationAbortedError("Operation timed out")

    async def attempt(self, operation: Operation[T]) -> T:
        """Run one attempt, racing it against abort and the deadline."""
        self.check()
        self.attempts += 1
        task = asyncio.ensure_future(operation())
        waiters: set[asyncio.Future[Any]] = {task}
        abort_waiter: asyncio.Future[Any] | None = None
        if self.abort is not None:
            abort_waiter = asyncio.ensure_future(self.abort.wait())
            waiters.add(abort_waiter)
        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=self.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
            if task in done:
                return task.result()
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            if abort_waiter is not None and abort_waiter in done:
                raise OperationAbortedError()
            raise OperationAbortedError("Operation timed out")
        finally:
            if abort_waiter is not None and not abort_waiter.done():
                abort_waiter.cancel()
            if not task.done():
                task.cancel()


class RetryEngine:
    """Classified retries with backoff, abort/deadline handling and fallbacks.

    Usage::

        engine = RetryEngine(ErrorClassifier())
        result = await engine.execute_with_retry(
            lambda: call_model(prompt),
            RetryPolicy(max_retries=3, initial_delay_s=0.5),
        )
        if result.success:
            ...

    When a ``ProviderMetricsCollector`` is supplied and the caller names the
    provider and model, each successful run is reported as a sample.
    """

    def __init__(
        self,
        classifier: ErrorClassifier | None = None,
        *,
        metrics: ProviderMetricsCollector | None = None,
        default_policy: RetryPolicy | None = None,
    ) -> None:
        self._classifier = classifier or ErrorClassifier()
        self._metrics = metrics
        self._default_policy = default_policy or RetryPolicy()

    @property
    def classifier(self) -> ErrorClassifier:
        return self._classifier

    @property
    def default_policy(self) -> RetryPolicy:
        return self._default_policy

    # ── Retry ────────────────────────────────────────────────
    async def execute_with_retry(
        self,
        operation: Operation[T],
        policy: RetryPolicy | None = None,
        *,
        provider: str | None = None,
        model: str | None = None,
    ) -> RetryResult[T]:
        """Run ``operation`` until it succeeds or the policy gives up.

        Never raises for operation failures: the outcome (including the last
        classification and whether the run was aborted) is in the result.
        """
        policy = policy or self._default_policy
        return await self._run(operation, policy, provider=provider, model=model)

    async def _run(
        self,
        operation: Operation[T],
        policy: RetryPolicy,
        *,
        on_error: ErrorCallback | None = None,
        provider: str | None = None,
        model: str | None = None,
    ) -> RetryResult[T]:
        run = _Run(policy.abort, policy.timeout_s)
        log = logger.bind(provider=provider, model=model) if provider else logger

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(0, policy.max_retries) + 1),
            wait=build_wait(policy),
            retry=retry_if_exception(_is_retryable),
            sleep=run.sleep,
            before_sleep=_log_retry(log),
            reraise=True,
        )

        value: Any = None
        elapsed_ms = 0.0
        try:
            async for attempt in retrying:
                with attempt:
                    started = time.monotonic()
                    try:
                        value = await run.attempt(operation)
                    except OperationAbortedError:
                        raise
                    except Exception as exc:
                        RETRY_ATTEMPTS.labels(outcome="failure").inc()
                        classification = self._classifier.classify(exc)
                        if on_error is not None:
                            await _maybe_await(on_error(classification, run.attempts))
                        raise _AttemptFailed(exc, classification) from exc
                    elapsed_ms = (time.monotonic() - started) * 1000
        except OperationAbortedError as exc:
            RETRY_ATTEMPTS.labels(outcome="aborted").inc()
            log.info("retry_aborted", attempts=run.attempts, reason=exc.message)
            return RetryResult(
                success=False,
                error=exc,
                attempts=run.attempts,
                total_delay_s=run.total_delay_s,
                aborted=True,
            )
        except _AttemptFailed as failed:
            log.warning(
                "retry_gave_up",
                attempts=run.attempts,
                pattern=failed.classification.pattern.value,
                retryable=failed.classification.is_retryable,
            )
            return RetryResult(
                success=False,
                error=failed.error,
                classification=failed.classification,
                attempts=run.attempts,
                total_delay_s=run.total_delay_s,
            )

        RETRY_ATTEMPTS.labels(outcome="success").inc()
        if run.attempts > 1:
            log.info("retry_succeeded", attempts=run.attempts, total_delay_s=round(run.total_delay_s, 3))
        self._report(provider, model, elapsed_ms)
        return RetryResult(
            success=True,
            result=value,
            attempts=run.attempts,
            total_delay_s=run.total_delay_s,
        )

    # ── Recovery ─────────────────────────────────────────────
    async def execute_with_recovery(
        self,
        operation: Operation[T],
        *,
        max_retries: int = 3,
        retry_delay_s: float = 1.0,
        max_delay_s: float | None = None,
        fallbacks: Sequence[Operation[T]] = (),
        on_error: ErrorCallback | None = None,
    ) -> T:
        """Retry ``operation`` with exponential backoff, then try each fallback once.

        Raises:
            RecoveryFailedError: Everything failed; carries only the last
                classification's user-facing message.
        """
        policy = RetryPolicy(
            max_retries=max_retries,
            initial_delay_s=retry_delay_s,
            max_delay_s=max_delay_s if max_delay_s is not None else self._default_policy.max_delay_s,
            strategy=RetryStrategy.EXPONENTIAL,
        )
        outcome = await self._run(operation, policy, on_error=on_error)
        if outcome.success:
            return outcome.result  # type: ignore[return-value]

        last_error = outcome.error
        last_classification = outcome.classification
        attempt_index = outcome.attempts

        for idx, fallback in enumerate(fallbacks):
            attempt_index += 1
            try:
                result = await fallback()
            except Exception as exc:
                FALLBACK_INVOCATIONS.labels(outcome="failure").inc()
                last_error = exc
                last_classification = self._classifier.classify(exc)
                logger.warning(
                    "fallback_failed",
                    fallback=idx,
                    pattern=last_classification.pattern.value,
                )
                if on_error is not None:
                    await _maybe_await(on_error(last_classification, attempt_index))
                continue
            FALLBACK_INVOCATIONS.labels(outcome="success").inc()
            logger.info("fallback_succeeded", fallback=idx)
            return result

        if last_classification is None and last_error is not None:
            last_classification = self._classifier.classify(last_error)
        message = (
            last_classification.user_message
            if last_classification is not None
            else "An unexpected error occurred. Please try again."
        )
        logger.error(
            "recovery_failed",
            attempts=attempt_index,
            fallbacks=len(fallbacks),
            pattern=last_classification.pattern.value if last_classification else None,
        )
        raise RecoveryFailedError(message, last_classification) from last_error

    # ── Internals ────────────────────────────────────────────
    def _report(self, provider: str | None, model: str | None, elapsed_ms: float) -> None:
        if self._metrics is None or not provider or not model:
            return
        self._metrics.collect_metrics(
            ProviderMetricsSample(
                provider=provider,
                model=model,
                response_time_ms=elapsed_ms,
                performance=PerformanceStats(latency_ms=elapsed_ms),
            )
        )


def _log_retry(log: Any) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        pattern = exc.classification.pattern.value if isinstance(exc, _AttemptFailed) else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        log.info(
            "retry_scheduled",
            attempt=retry_state.attempt_number,
            pattern=pattern,
            delay_s=round(float(delay), 3),
        )

    return _before_sleep


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value
