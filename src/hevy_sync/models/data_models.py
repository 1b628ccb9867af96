"""Core data models for the sync core."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class EventType(Enum):
    """Workout event log entry types."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ResumeDecision(Enum):
    """What to do when an earlier import left completed steps behind."""
    RESUME = "resume"
    RESTART = "restart"
    CANCEL = "cancel"


class ImportStatus(Enum):
    """Outcome of one import execution."""
    COMPLETED = "completed"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


@dataclass
class RequestDescriptor:
    """A single HTTP request to issue."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    params: Optional[Dict[str, Any]] = None
    body: Optional[Any] = None
    timeout: Optional[float] = None


@dataclass
class ResponseOutcome:
    """Status, headers and raw body of a completed HTTP exchange."""
    status_code: int
    headers: Mapping[str, str]
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body)


@dataclass
class RateLimitBudget:
    """Server-advertised request budget."""
    remaining: Optional[int]
    limit: Optional[int]
    reset_at: Optional[float]  # epoch seconds
    observed_at: float  # epoch seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_at": self.reset_at,
            "observed_at": self.observed_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RateLimitBudget":
        return cls(
            remaining=data.get("remaining"),
            limit=data.get("limit"),
            reset_at=data.get("reset_at"),
            observed_at=data["observed_at"],
        )


@dataclass
class PageCursor:
    """Identifies one page request. Pages are 1-indexed."""
    endpoint: str
    page: int
    page_size: int
    extra_params: Dict[str, Any] = field(default_factory=dict)

    def params(self) -> Dict[str, Any]:
        return {"page": self.page, "page_size": self.page_size, **self.extra_params}

    def next(self, step: int = 1) -> "PageCursor":
        return PageCursor(self.endpoint, self.page + step, self.page_size, self.extra_params)


@dataclass
class Event:
    """One entry from the workout event log."""
    type: EventType
    entity_id: str

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> Optional["Event"]:
        """Parse an event log entry, returning None for unknown types or missing ids."""
        try:
            event_type = EventType(data.get("type"))
        except ValueError:
            return None

        workout = data.get("workout") or {}
        entity_id = workout.get("id")
        if entity_id is None and event_type is EventType.DELETED:
            entity_id = data.get("id")
        if entity_id is None:
            return None
        return cls(type=event_type, entity_id=str(entity_id))


@dataclass
class BatchFetchResult:
    """Entities fetched by id and the ids that could not be fetched."""
    succeeded: List[Dict[str, Any]] = field(default_factory=list)
    failed_ids: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed_ids)


@dataclass
class ImportProgress:
    """Durable record of which import steps have completed."""
    completed_steps: Set[str] = field(default_factory=set)
    timestamp: Optional[str] = None  # ISO-8601 UTC

    def to_json(self) -> str:
        return json.dumps({
            "completedSteps": sorted(self.completed_steps),
            "timestamp": self.timestamp,
        })

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ImportProgress":
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(
            completed_steps=set(data.get("completedSteps") or []),
            timestamp=data.get("timestamp"),
        )


@dataclass
class ActiveImportState:
    """Durable active flag with its heartbeat (epoch seconds)."""
    active: bool = False
    heartbeat_at: Optional[float] = None

    def to_json(self) -> str:
        return json.dumps({"active": self.active, "heartbeat": self.heartbeat_at})

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "ActiveImportState":
        if not raw:
            return cls()
        data = json.loads(raw)
        return cls(active=bool(data.get("active")), heartbeat_at=data.get("heartbeat"))


@dataclass
class StepResult:
    """Per-step statistics collected by the import orchestrator."""
    name: str
    items: int = 0
    skipped: bool = False
    duration: float = 0.0


@dataclass
class ImportResult:
    """Result of one import execution."""
    status: ImportStatus
    steps: List[StepResult] = field(default_factory=list)
    completed_steps: List[str] = field(default_factory=list)
    message: Optional[str] = None

    @property
    def total_items(self) -> int:
        return sum(step.items for step in self.steps)
