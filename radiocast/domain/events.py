"""Domain events for the streaming pipeline.

Events flow through the EventBus so the pipeline never talks to the console
directly. Workers publish from their own threads.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
from .models import GroupResult, StreamGroup


class Event(BaseModel):
    """Base class for all domain events."""

    pass


class DiscoveryFinished(Event):
    """Emitted after the catalog scan and archive filtering."""

    files_found: int
    files_to_stream: int
    already_streamed: int = 0
    invalid_files: List[Path] = Field(default_factory=list)


class PlaylistsGenerated(Event):
    """Emitted once playlists for the accepted groups are written."""

    identifiers: List[str]
    skipped: List[str] = Field(default_factory=list)


class GroupEvent(Event):
    """Base class for events related to a single stream group."""

    group: StreamGroup


class GroupStarted(GroupEvent):
    pass


class FileStreamStarted(GroupEvent):
    """Emitted before each file of a group is published."""

    file: Path
    position: int


class PublishRetryScheduled(GroupEvent):
    file: Path
    attempt: int
    delay_seconds: float
    error_message: str


class GroupCompleted(GroupEvent):
    """Emitted after the playlist has been moved to the archive."""

    archived_playlist: Optional[Path] = None


class GroupFailed(GroupEvent):
    error_message: str


class GroupSkipped(GroupEvent):
    pass


class GroupInterrupted(GroupEvent):
    pass


class StreamingFinished(Event):
    results: List[GroupResult]
