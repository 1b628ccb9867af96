"""Incremental sync, checkpointing and cancellation."""

from .cancellation import CancelToken
from .checkpoint import ImportCheckpoint
from .delta import DeltaEventProcessor

__all__ = ["CancelToken", "DeltaEventProcessor", "ImportCheckpoint"]
