"""Cooperative cancellation checked at the top of every loop iteration."""

from typing import Callable, Optional

from hevy_sync.models.clock import Clock, MonotonicClock
from hevy_sync.models.errors import ImportTimeoutError


class CancelToken:
    """
    Cancellation signal polled at well-defined suspension points.

    Fires when cancel() was called, when the optional deadline (the host's
    execution budget) has passed, or when the optional predicate returns True.
    Work already in flight is never interrupted; loops check the token before
    starting the next page, retry attempt or batch round.
    """

    def __init__(
        self,
        budget_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
        predicate: Optional[Callable[[], bool]] = None
    ):
        self.clock = clock or MonotonicClock()
        self.deadline = self.clock.now() + budget_seconds if budget_seconds is not None else None
        self.predicate = predicate
        self._cancelled = False

    @classmethod
    def none(cls) -> "CancelToken":
        """Token that only fires on an explicit cancel()."""
        return cls()

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        if self.deadline is not None and self.clock.now() >= self.deadline:
            self._cancelled = True
        elif self.predicate is not None and self.predicate():
            self._cancelled = True
        return self._cancelled

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self.clock.now())

    def raise_if_cancelled(
        self,
        message: str,
        items_processed: int = 0,
        pages_processed: int = 0,
        **context
    ) -> None:
        if self.cancelled:
            raise ImportTimeoutError(
                message,
                items_processed=items_processed,
                pages_processed=pages_processed,
                context=context,
            )
