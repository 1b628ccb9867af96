"""Interface of the tabular store that receives fetched rows."""

import inspect
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Set, Union


Row = Dict[str, Any]

# Page consumer handed to PaginationOrchestrator.walk; may be sync or async
PageSink = Callable[[List[Row]], Union[None, Awaitable[None]]]


class Sink(Protocol):
    """The sink alone decides how rows are persisted."""

    def upsert(self, rows: List[Row]) -> None:
        ...

    def delete_by_ids(self, ids: Set[str]) -> None:
        ...


async def call_sink(func: Callable[..., Any], *args: Any) -> None:
    """Invoke a sink method that may or may not be a coroutine."""
    result = func(*args)
    if inspect.isawaitable(result):
        await result


class TableSink(Sink, Protocol):
    """Sink that can also be emptied and counted, as full imports need."""

    def clear(self) -> None:
        ...

    def count(self) -> int:
        ...
