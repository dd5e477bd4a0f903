"""Domain events for a single encode job.

Events flow through the EventBus so the pipeline never talks to the terminal
view directly. See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import Optional
from pydantic import BaseModel
from .models import Backend, EncodeParams, EncodeProgress


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class JobStarted(Event):
    """Emitted right before the encoder process is launched."""

    backend: Backend
    params: EncodeParams


class JobProgressUpdated(Event):
    """Emitted for every snapshot parsed from the encoder output."""

    progress: EncodeProgress


class JobCompleted(Event):
    """Emitted when the encoder exits with status 0."""

    output_path: Path
    output_size_bytes: Optional[int] = None


class JobFailed(Event):
    """Emitted when probing, starting or running the encoder fails."""

    error_message: str


class JobCancelled(Event):
    """Emitted when the encode is cancelled by the user."""

    pass
