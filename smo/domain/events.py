"""Domain events for the media optimization pipeline.

Events flow through the EventBus and decouple the orchestrator from the
progress display, the JSON emitter and the counters.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import HistoricalStats, OptimizationJob


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobEvent(Event):
    """Base class for events related to a single file."""

    job: OptimizationJob


class JobStarted(JobEvent):
    """Emitted when a worker admits a file (CheckState)."""

    index: int = 0
    total: int = 0


class JobCompleted(JobEvent):
    """Emitted when a file reaches a terminal decision (REPLACED or KEPT_ORIGINAL)."""

    original_size: int


class JobSkipped(JobEvent):
    """Emitted for files already recorded with an unchanged mtime."""

    pass


class JobFailed(JobEvent):
    """Emitted when a file errors or is interrupted."""

    error_message: str


class DiscoveryStarted(Event):
    directory: Path


class DiscoveryFinished(Event):
    files_found: int
    images: int = 0
    videos: int = 0


class ShutdownRequested(Event):
    """Stop dispatching new files; in-flight files finish normally."""

    pass


class ProcessingFinished(Event):
    """Emitted once the dispatch loop ends."""

    interrupted: bool = False
    duration_seconds: float = 0.0
    historical: Optional[HistoricalStats] = None
