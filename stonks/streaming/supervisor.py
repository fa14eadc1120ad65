"""Retry wrapper and restart supervision for pipeline stages."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Protocol, TypeVar

from .bus import Subscription


logger = logging.getLogger(__name__)

T = TypeVar("T")


class StageFailedError(Exception):
    """Raised when a stage exceeds its restart budget."""
    pass


class Stage(Protocol):
    """A pipeline component consuming one message type."""

    async def handle(self, message: Any) -> None:
        ...

    async def close(self) -> None:
        ...


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: base_delay * multiplier**(attempt-1), capped at max_delay."""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))


@dataclass(frozen=True)
class RestartPolicy:
    max_restarts: int | None = None  # None = restart unconditionally
    backoff: float = 1.0


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of a retried call: a value, or the last error after all attempts."""
    ok: bool
    attempts: int
    value: T | None = None
    error: BaseException | None = None


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    label: str = "call",
) -> Outcome[T]:
    """
    Await func() until it succeeds or the attempts run out.

    Errors outside retry_on fail immediately without further attempts.
    Cancellation always propagates.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            value = await func()
            return Outcome(ok=True, attempts=attempt, value=value)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not isinstance(e, retry_on) or attempt >= policy.max_attempts:
                return Outcome(ok=False, attempts=attempt, error=e)
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{label} failed (attempt {attempt}/{policy.max_attempts}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)


class Supervisor:
    """
    Runs stage instances against their subscriptions and restarts them on faults.

    Each message is handled through run_with_retry. A message that still fails
    (or any fault in the consume loop) discards the instance together with that
    message, and a fresh instance is built from the factory after the restart
    backoff.
    """

    def __init__(
        self,
        retry_policy: RetryPolicy | None = None,
        restart_policy: RestartPolicy | None = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=1)
        self.restart_policy = restart_policy or RestartPolicy()
        self.restarts: dict[str, int] = {}
        self.tasks: dict[str, asyncio.Task] = {}
        self.instances: dict[str, Stage] = {}

    def supervise(
        self,
        name: str,
        factory: Callable[[], Stage],
        subscription: Subscription,
    ) -> asyncio.Task:
        self.restarts.setdefault(name, 0)
        task = asyncio.create_task(self._run(name, factory, subscription), name=name)
        self.tasks[name] = task
        return task

    async def _run(self, name: str, factory: Callable[[], Stage], subscription: Subscription) -> None:
        while True:
            stage = factory()
            self.instances[name] = stage
            logger.info(f"Stage '{name}' started.")
            try:
                await self._consume(name, stage, subscription)
            except asyncio.CancelledError:
                await stage.close()
                logger.info(f"Stage '{name}' cancelled.")
                raise
            except Exception as e:
                logger.error(f"Stage '{name}' crashed: {e}", exc_info=True)
                await stage.close()

                self.restarts[name] += 1
                cap = self.restart_policy.max_restarts
                if cap is not None and self.restarts[name] > cap:
                    logger.error(f"Stage '{name}' exceeded {cap} restart(s). Giving up.")
                    raise StageFailedError(f"Stage '{name}' exceeded {cap} restart(s)") from e

                logger.warning(
                    f"Restarting stage '{name}' in {self.restart_policy.backoff:.2f}s "
                    f"(restart #{self.restarts[name]})"
                )
                await asyncio.sleep(self.restart_policy.backoff)

    async def _consume(self, name: str, stage: Stage, subscription: Subscription) -> None:
        while True:
            message = await subscription.get()
            try:
                outcome = await run_with_retry(
                    lambda: stage.handle(message),
                    self.retry_policy,
                    label=f"Stage '{name}'",
                )
            finally:
                subscription.task_done()

            if not outcome.ok:
                raise outcome.error

    async def stop(self) -> None:
        for task in self.tasks.values():
            task.cancel()
        if self.tasks:
            await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        logger.info("Supervisor stopped.")
