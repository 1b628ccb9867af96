"""Structured logging for sync monitoring."""

import json
import logging
from typing import Any, Dict, List, Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "hevy_sync", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs) -> None:
        """
        Log structured event.

        Standard keys: event, source, page, status, attempt, elapsed_ms,
                      cb_state, items, step, batch_size
        """
        log_data = {"event": event, **kwargs}
        self.logger.log(level, json.dumps(log_data, default=str))

    def warning(self, event: str, **kwargs) -> None:
        self.log(event, level=logging.WARNING, **kwargs)

    def fetch_start(self, source: str, page: Optional[int] = None) -> None:
        self.log("fetch_start", level=logging.DEBUG, source=source, page=page)

    def fetch_success(self, source: str, status: int, elapsed_ms: float, attempt: int) -> None:
        self.log("fetch_success", level=logging.DEBUG, source=source, status=status,
                 elapsed_ms=elapsed_ms, attempt=attempt)

    def fetch_error(self, source: str, status: Optional[int], error: str, attempt: int) -> None:
        self.log("fetch_error", level=logging.WARNING, source=source, status=status,
                 error=error, attempt=attempt)

    def circuit_breaker_state(self, state: str, failure_weight: float) -> None:
        self.log("circuit_breaker", cb_state=state, failure_weight=failure_weight)

    def rate_limit_low(self, remaining: int, limit: int) -> None:
        self.warning("rate_limit_low", remaining=remaining, limit=limit)

    def page_applied(self, source: str, page: int, items: int, total: int) -> None:
        self.log("page_applied", level=logging.DEBUG, source=source, page=page,
                 items=items, total=total)

    def pagination_complete(self, source: str, pages: int, total: int, reason: str) -> None:
        self.log("pagination_complete", source=source, pages=pages, total=total, reason=reason)

    def batch_round(self, round_index: int, batch_size: int, failed: int) -> None:
        self.log("batch_round", round=round_index, batch_size=batch_size, failed=failed)

    def batch_partial_failure(self, failed_ids: List[Any], total: int, cap: int = 50) -> None:
        shown = failed_ids[:cap]
        self.warning(
            "batch_partial_failure",
            failed=len(failed_ids),
            total=total,
            failed_ids=shown,
            more=max(0, len(failed_ids) - cap),
        )

    def step_start(self, step: str) -> None:
        self.log("step_start", step=step)

    def step_skipped(self, step: str, reason: str) -> None:
        self.log("step_skipped", step=step, reason=reason)

    def step_complete(self, step: str, elapsed_ms: float) -> None:
        self.log("step_complete", step=step, elapsed_ms=elapsed_ms)

    def checkpoint(self, action: str, **kwargs: Any) -> None:
        self.log("checkpoint", action=action, **kwargs)

    def delta_applied(self, deleted: int, upserted: int, cursor: str) -> None:
        self.log("delta_applied", deleted=deleted, upserted=upserted, cursor=cursor)

    def summary(self, data: Dict[str, Any]) -> None:
        self.log("summary", **data)
