import logging
import re
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Pattern, Protocol, Union

from radiocast.config.models import CatalogConfig

YEAR_PATTERN = re.compile(r"\d{4}")
MONTH_PATTERN = re.compile(r"0[1-9]|1[0-2]")
DAY_PATTERN = re.compile(r"0[1-9]|[12][0-9]|3[01]")


class Catalog(Protocol):
    """What the playlist generator and stream manager need from a catalog."""

    invalid_files: List[Path]

    def validate(self) -> bool: ...

    def collect(self) -> List[Path]: ...

    def remove_from_processed_files(self, file_path: Union[str, Path]) -> bool: ...


class ProcessedSet:
    """Paths admitted to the catalog during this process lifetime.

    Added to by the scan, released by stream workers once their group has
    been archived, so every access goes through the lock.
    """

    def __init__(self):
        self._paths: set[str] = set()
        self._lock = threading.Lock()

    def add(self, path: Union[str, Path]) -> bool:
        key = str(path)
        with self._lock:
            if key in self._paths:
                return False
            self._paths.add(key)
            return True

    def discard(self, path: Union[str, Path]) -> bool:
        key = str(path)
        with self._lock:
            if key not in self._paths:
                return False
            self._paths.remove(key)
            return True

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return str(path) in self._paths

    def __len__(self) -> int:
        with self._lock:
            return len(self._paths)


class FileCatalog:
    """Scans ``root/<source>/<YYYY>/<MM>/<DD>/<file>`` for streamable audio.

    Folders that break the naming convention are logged and skipped. Files
    with an unsupported extension are recorded in ``invalid_files``; empty
    files are skipped silently. Directory listings are sorted, so the output
    order is source, year, month, day, file name.
    """

    def __init__(self, root_dir: Path, config: Optional[CatalogConfig] = None):
        self.root_dir = Path(root_dir)
        self.config = config or CatalogConfig()
        self.extensions = set(self.config.extensions)
        formats = "|".join(re.escape(f) for f in self.config.source_formats)
        self.source_pattern = re.compile(rf"{re.escape(self.config.source_prefix)}\d+_({formats})")
        self.invalid_files: List[Path] = []
        self.last_file_count = 0
        self._processed = ProcessedSet()
        self.logger = logging.getLogger(__name__)

    def validate(self) -> bool:
        """Walks the archive without admitting any file; False if the scan fails."""
        try:
            self._process_files(collect_files=False)
            return True
        except Exception as e:
            self.logger.error(f"An error occurred while validating the directory structure: {e}")
            return False

    def collect(self) -> List[Path]:
        """Admits every new valid file and returns them in traversal order."""
        collected: List[Path] = []
        try:
            self._process_files(collect_files=True, collected=collected)
        except Exception as e:
            self.logger.error(f"An error occurred while collecting the files: {e}")
        return collected

    def remove_from_processed_files(self, file_path: Union[str, Path]) -> bool:
        return self._processed.discard(file_path)

    def is_processed(self, file_path: Union[str, Path]) -> bool:
        return file_path in self._processed

    def _subdirs(self, parent: Path, pattern: Pattern[str], label: str) -> Iterator[Path]:
        for entry in sorted(parent.iterdir(), key=lambda p: p.name):
            if not entry.is_dir():
                continue
            if not pattern.fullmatch(entry.name):
                self.logger.error(f"Invalid {label} folder: {entry}")
                continue
            yield entry

    def _process_files(self, collect_files: bool, collected: Optional[List[Path]] = None):
        if not self.root_dir.is_dir():
            self.logger.error(f"Root directory does not exist: {self.root_dir}")
            raise FileNotFoundError(f"Root directory does not exist: {self.root_dir}")

        file_count = 0
        for source_dir in self._subdirs(self.root_dir, self.source_pattern, "radio"):
            for year_dir in self._subdirs(source_dir, YEAR_PATTERN, "year"):
                for month_dir in self._subdirs(year_dir, MONTH_PATTERN, "month"):
                    for day_dir in self._subdirs(month_dir, DAY_PATTERN, "day"):
                        for file_path in sorted(day_dir.iterdir(), key=lambda p: p.name):
                            if not file_path.is_file():
                                continue
                            if file_path in self._processed:
                                continue

                            if file_path.suffix.lower() not in self.extensions:
                                self.logger.error(f"Unsupported audio format: {file_path}")
                                if file_path not in self.invalid_files:
                                    self.invalid_files.append(file_path)
                                continue

                            if file_path.stat().st_size <= 0:
                                self.logger.error(f"File is empty: {file_path}")
                                continue

                            # Validation only counts; admitting would hide the files from collect()
                            if not collect_files:
                                file_count += 1
                                continue

                            if self._processed.add(file_path):
                                file_count += 1
                                if collected is not None:
                                    collected.append(file_path)

        self.last_file_count = file_count
        self.logger.info(f"Total valid files ready for streaming: {file_count}")
