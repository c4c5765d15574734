import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from loguru import logger

from ip_onchain_client.errors import PollTimeoutError, Stage
from ip_onchain_client.models import PollingConfig

T = TypeVar("T")


@dataclass(frozen=True)
class PollOutcome(Generic[T]):
    """Result of one poll tick: either a value or a reason to wait."""

    is_ready: bool
    value: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def ready(cls, value: T) -> "PollOutcome[T]":
        return cls(is_ready=True, value=value)

    @classmethod
    def not_ready(cls, reason: str = "not ready") -> "PollOutcome[T]":
        return cls(is_ready=False, reason=reason)


@dataclass
class PollState:
    attempts_made: int = 0
    interval: float = 0.0
    elapsed: float = 0.0


class RetryPoller(Generic[T]):
    """Invoke an operation at a fixed interval until it is ready or the budget runs out.

    The operation signals a fatal condition by raising; that exception is
    propagated as-is and no further tick happens.
    """

    def __init__(
        self,
        config: Optional[PollingConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        stage: Optional[Stage] = None,
    ):
        self.config = config or PollingConfig()
        self.sleep = sleep
        self.stage = stage
        self.logger = logger

    def _budget_exhausted(self, state: PollState) -> bool:
        """True when another tick would exceed the attempt or time budget"""
        max_attempts, timeout = self.config.max_attempts, self.config.timeout
        if max_attempts is not None and state.attempts_made >= max_attempts:
            return True
        if timeout is not None and state.elapsed + state.interval > timeout:
            return True
        return False

    async def poll(
        self,
        operation: Callable[[], Awaitable[PollOutcome[T]]],
        identifier: Optional[str] = None,
    ) -> T:
        loop = asyncio.get_running_loop()
        started = loop.time()
        state = PollState(interval=self.config.interval)
        stage = self.stage.value if self.stage else None
        log = self.logger.bind(stage=stage, id=identifier)

        while True:
            outcome = await operation()
            state.attempts_made += 1
            state.elapsed = loop.time() - started

            if outcome.is_ready:
                log.debug(
                    f"Ready after {state.attempts_made} attempt(s), "
                    f"{state.elapsed:.2f}s"
                )
                return outcome.value

            if self._budget_exhausted(state):
                break

            log.debug(
                f"{outcome.reason}; attempt {state.attempts_made}, "
                f"waiting {state.interval:.2f}s before next attempt"
            )
            await self.sleep(state.interval)
            state.elapsed = loop.time() - started

        log.warning(
            f"Polling gave up after {state.attempts_made} attempt(s): {outcome.reason}"
        )
        raise PollTimeoutError(
            f"not ready after {state.attempts_made} attempt(s) "
            f"in {state.elapsed:.2f}s: {outcome.reason}",
            stage=self.stage,
            identifier=identifier,
            attempts_made=state.attempts_made,
            elapsed=state.elapsed,
        )
