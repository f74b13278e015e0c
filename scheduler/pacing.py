"""
Sequential, rate-limited task execution.

Tasks run one at a time with a fixed delay between consecutive tasks. A
deadline and a cancellation event are checked at each iteration boundary,
never mid-task, so every task either runs to completion or is not started.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class TaskOutcome(Generic[T]):
    """Result of one paced task: either a value or the exception it raised."""

    __slots__ = ("item", "value", "error")

    def __init__(self, item: T, value: Any = None, error: Optional[BaseException] = None):
        self.item = item
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None


class PacedRunReport(Generic[T]):
    """What a paced run attempted and what it left untouched."""

    def __init__(self):
        self.outcomes: List[TaskOutcome[T]] = []
        self.skipped: List[T] = []
        self.stop_reason: Optional[str] = None

    @property
    def attempted(self) -> int:
        return len(self.outcomes)

    @property
    def failures(self) -> List[TaskOutcome[T]]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def stopped_early(self) -> bool:
        return self.stop_reason is not None


class PacedTaskRunner:
    """
    Runs an async callable over items sequentially with a pacing delay.

    Args:
        delay_seconds: Pause between consecutive tasks (not before the first or after the last)
        sleep: Awaitable used for the pause
        clock: Monotonic clock the deadline is expressed in
    """

    def __init__(
        self,
        delay_seconds: float,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0")
        self.delay_seconds = delay_seconds
        self._sleep = sleep
        self.clock = clock

    def deadline_after(self, seconds: Optional[float]) -> Optional[float]:
        """Deadline value ``seconds`` from now on this runner's clock."""
        if seconds is None:
            return None
        return self.clock() + seconds

    def _stop_reason(self, deadline: Optional[float], cancel_event: Optional[asyncio.Event]) -> Optional[str]:
        if cancel_event is not None and cancel_event.is_set():
            return "cancelled"
        if deadline is not None and self.clock() >= deadline:
            return "deadline"
        return None

    async def run(
        self,
        items: Sequence[T],
        task: Callable[[T], Awaitable[Any]],
        deadline: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PacedRunReport[T]:
        """
        Run ``task`` for each item in order.

        Exceptions raised by a task are captured in its outcome and the run
        continues with the next item.
        """
        report: PacedRunReport[T] = PacedRunReport()

        for index, item in enumerate(items):
            reason = self._stop_reason(deadline, cancel_event)
            if reason is None and index > 0 and self.delay_seconds > 0:
                await self._sleep(self.delay_seconds)
                reason = self._stop_reason(deadline, cancel_event)

            if reason is not None:
                report.stop_reason = reason
                report.skipped = list(items[index:])
                logger.warning("Paced run stopped early", reason=reason, skipped=len(report.skipped))
                break

            try:
                value = await task(item)
            except Exception as e:
                report.outcomes.append(TaskOutcome(item, error=e))
            else:
                report.outcomes.append(TaskOutcome(item, value=value))

        return report
