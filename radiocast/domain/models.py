from enum import Enum
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field

from .errors import IdentifierError


class GroupStatus(str, Enum):
    PENDING = "PENDING"
    STREAMING = "STREAMING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"  # Empty group
    INTERRUPTED = "INTERRUPTED"  # Ctrl+C / SIGTERM during streaming


class CatalogEntry(BaseModel):
    """An audio file plus the metadata encoded in its location.

    Layout: ``<marker>/<source>/<year>/<month>/<day>/<file>``. The hour is
    taken from the third ``_``-separated token of the file name.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    source: str
    year: str
    month: str
    day: str

    @classmethod
    def from_path(cls, path: Path, root_marker: str) -> "CatalogEntry":
        path = Path(path)
        parts = path.parts
        try:
            start = parts.index(root_marker) + 1
        except ValueError:
            raise IdentifierError(
                f"Folder {root_marker} was not found in audio path {path}"
            ) from None

        segments = parts[start:]
        if len(segments) < 5:
            raise IdentifierError(
                f"Audio path {path} must be <{root_marker}>/<source>/<year>/<month>/<day>/<file>"
            )
        source, year, month, day = segments[:4]
        return cls(path=path, source=source, year=year, month=month, day=day)

    @property
    def hour(self) -> str:
        tokens = self.path.stem.split("_")
        if len(tokens) < 3 or len(tokens[2]) < 2:
            raise IdentifierError(f"Cannot parse hour from file name: {self.path.name}")
        return tokens[2][:2]

    @property
    def group_identifier(self) -> str:
        return f"{self.source}_{self.year}_{self.month}_{self.day}_{self.hour}"


class CodecProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    codec: str
    container: str
    content_type: str


class StreamGroup(BaseModel):
    """One output channel: an ordered run of files bound to a relay mount."""

    index: int
    files: List[Path] = Field(default_factory=list)
    port: int
    mount: str
    identifier: Optional[str] = None
    status: GroupStatus = GroupStatus.PENDING


class GroupResult(BaseModel):
    index: int
    identifier: Optional[str] = None
    status: GroupStatus
    files_total: int = 0
    files_streamed: int = 0
    error_message: Optional[str] = None
    duration_seconds: Optional[float] = None
