"""Channel partitioning and HLS-style playlist generation.

The archive directory (``<playlist_dir>/AlreadyStreamed``) is the only record
of what has been broadcast: a playlist moved there marks its group identifier
as done, and later runs drop every file that maps to that identifier.
"""

import logging
import math
import shutil
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from radiocast.domain.events import DiscoveryFinished, PlaylistsGenerated
from radiocast.domain.models import CatalogEntry
from radiocast.infrastructure.event_bus import EventBus
from radiocast.infrastructure.file_catalog import Catalog

ARCHIVE_DIR_NAME = "AlreadyStreamed"
PLAYLIST_SUFFIX = ".m3u8"
ENTRY_DURATION_S = 7200  # Real durations are never probed
PLAYLIST_HEADER = [
    "#EXTM3U",
    "#EXT-X-VERSION:3",
    "#EXT-X-MEDIA-SEQUENCE:0",
    "#EXT-X-ALLOW-CACHE:YES",
]


def generate_unique_identifier(audio_files: Union[Path, str, Sequence[Path]], root_marker: str = "Rai") -> str:
    """Identifier of a file, or of a group (taken from its first file).

    Raises IdentifierError when the path does not contain ``root_marker``.
    """
    if isinstance(audio_files, (str, Path)):
        first = Path(audio_files)
    else:
        if not audio_files:
            raise ValueError("Cannot derive an identifier for an empty group")
        first = Path(audio_files[0])
    return CatalogEntry.from_path(first, root_marker).group_identifier


def divide_into_streams(files: Sequence[Path], max_streams: int) -> List[List[Path]]:
    """Splits files into at most ``max_streams`` contiguous chunks of equal size.

    Only the last chunk may be shorter; fewer chunks are returned when the
    files run out first.
    """
    if max_streams <= 0:
        raise ValueError("max_streams must be greater than zero")
    total = len(files)
    if total == 0:
        return []
    per_stream = math.ceil(total / max_streams)

    streams: List[List[Path]] = []
    for i in range(max_streams):
        start = i * per_stream
        if start >= total:
            break
        streams.append(list(files[start:start + per_stream]))
    return streams


class PlaylistGenerator:
    """Turns the catalog into per-channel playlists, skipping archived ones."""

    def __init__(
        self,
        playlist_dir: Path,
        catalog: Catalog,
        max_streams: int,
        root_marker: str = "Rai",
        event_bus: Optional[EventBus] = None,
    ):
        self.playlist_dir = Path(playlist_dir)
        self.catalog = catalog
        self.max_streams = max_streams
        self.root_marker = root_marker
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)

        self.playlist_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)

    @property
    def archive_dir(self) -> Path:
        return self.playlist_dir / ARCHIVE_DIR_NAME

    def playlist_path(self, identifier: str) -> Path:
        return self.playlist_dir / f"{identifier}{PLAYLIST_SUFFIX}"

    def archived_playlist_path(self, identifier: str) -> Path:
        return self.archive_dir / f"{identifier}{PLAYLIST_SUFFIX}"

    def is_already_streamed(self, identifier: str) -> bool:
        return self.archived_playlist_path(identifier).exists()

    def generate_unique_identifier(self, audio_files: Union[Path, Sequence[Path]]) -> str:
        return generate_unique_identifier(audio_files, self.root_marker)

    def load_and_sort(self) -> List[Path]:
        """Collects new catalog files and drops those whose group was already streamed.

        Order is the catalog's traversal order (sorted by folder and name).
        """
        collected = self.catalog.collect()
        files: List[Path] = []
        already_streamed = set()
        dropped = 0
        for file_path in collected:
            identifier = self.generate_unique_identifier(file_path)
            if self.is_already_streamed(identifier):
                if identifier not in already_streamed:
                    self.logger.warning(f"This playlist was already streamed: {identifier}")
                    already_streamed.add(identifier)
                dropped += 1
                continue
            files.append(file_path)

        if not files:
            self.logger.warning("No valid (or new) audio files found in the audio folder.")

        if self.event_bus:
            self.event_bus.publish(DiscoveryFinished(
                files_found=len(collected),
                files_to_stream=len(files),
                already_streamed=dropped,
                invalid_files=list(self.catalog.invalid_files),
            ))
        return files

    def divide_into_streams(self, files: Sequence[Path], max_streams: Optional[int] = None) -> List[List[Path]]:
        return divide_into_streams(files, self.max_streams if max_streams is None else max_streams)

    def generate_playlists(self, streams: Sequence[Sequence[Path]]) -> List[List[Path]]:
        """Writes a playlist per identifier and returns the groups that still need streaming.

        Groups that derive the same identifier (an hour split across channels)
        share one playlist listing the files of all of them, in group order.
        """
        accepted: List[List[Path]] = []
        units: Dict[str, List[Path]] = {}
        skipped: List[str] = []
        for stream in streams:
            if not stream:
                self.logger.warning("Skipping empty stream while generating playlists")
                continue
            identifier = self.generate_unique_identifier(stream)
            if self.is_already_streamed(identifier):
                self.logger.warning(f"Playlist {identifier} was already streamed, not regenerating it")
                if identifier not in skipped:
                    skipped.append(identifier)
                continue
            if identifier in units:
                self.logger.info(f"Playlist {identifier} spans several streams")
            units.setdefault(identifier, []).extend(stream)
            accepted.append(list(stream))

        for identifier, files in units.items():
            self._write_playlist(files, identifier)
        written = list(units)

        self.logger.info(
            f"For a given amount of audio files, we will need a total of: {len(accepted)} number of streams."
        )
        if self.event_bus:
            self.event_bus.publish(PlaylistsGenerated(identifiers=written, skipped=skipped))
        return accepted

    def _write_playlist(self, audio_files: Sequence[Path], identifier: str) -> Path:
        playlist_path = self.playlist_path(identifier)
        lines = list(PLAYLIST_HEADER)
        for audio_file in audio_files:
            lines.append(f"#EXTINF:{ENTRY_DURATION_S},")
            lines.append(str(audio_file))
        playlist_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        self.logger.info(f"PLAYLIST_WRITTEN: {playlist_path.name} ({len(audio_files)} files)")
        return playlist_path

    def archive_playlist(self, identifier: str) -> Optional[Path]:
        """Moves a finished playlist into the archive; None if it is missing."""
        source = self.playlist_path(identifier)
        if not source.exists():
            self.logger.warning(f"Playlist {source.name} not found, nothing to archive")
            return None
        dest = self.archived_playlist_path(identifier)
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(dest))
        self.logger.info(f"Playlist archived: {source.name} -> {dest}")
        return dest

    def get_playlists(self) -> List[Path]:
        return sorted(self.playlist_dir.glob(f"*{PLAYLIST_SUFFIX}"))
