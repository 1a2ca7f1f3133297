"""Stream execution engine.

Runs one worker thread per stream group. Each worker publishes its files one
after another (playlist order is broadcast order) to its own relay mount on
``base_port + index``. Groups that share an identifier form one broadcast
unit with one playlist. When the last group of a unit completes, the playlist
is moved into the archive and the unit's files are released from the catalog.
A group that exhausts the retry budget on any file is marked FAILED. Its unit
is then left untouched, so the next run starts it again from the first file.

A single ``threading.Event`` is the cooperative shutdown signal: workers check
it before every file, the publisher polls it while ffmpeg runs, and the retry
backoff waits on it. Cancellation is reported as INTERRUPTED, never FAILED.
"""

import concurrent.futures
import logging
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence, Set

from radiocast.config.models import AppConfig
from radiocast.domain.errors import GroupFailedError, OperationCancelled, StreamingFailed
from radiocast.domain.events import (
    FileStreamStarted, GroupCompleted, GroupFailed, GroupInterrupted, GroupSkipped,
    GroupStarted, PublishRetryScheduled, StreamingFinished,
)
from radiocast.domain.models import GroupResult, GroupStatus, StreamGroup
from radiocast.infrastructure.event_bus import EventBus
from radiocast.infrastructure.file_catalog import Catalog
from radiocast.pipeline.playlist_generator import PlaylistGenerator
from radiocast.pipeline.retry import call_with_retry, exponential_backoff


class Publisher(Protocol):
    def publish(self, audio_file: Path, port: int, mount: str,
                shutdown_event: Optional[threading.Event] = None) -> None: ...


class BroadcastUnit:
    """Groups sharing one identifier; archived only when all of them complete."""

    def __init__(self, identifier: str):
        self.identifier = identifier
        self.groups: List[StreamGroup] = []
        self.settled: Set[int] = set()
        self.broken = False

    @property
    def outstanding(self) -> int:
        return len(self.groups) - len(self.settled)

    @property
    def files(self) -> List[Path]:
        return [f for group in self.groups for f in group.files]


class StreamManager:
    """Streams partitioned groups concurrently and archives the finished ones.

    Args:
        config: AppConfig (relay base port and mount prefix, retry budget).
        catalog: Catalog whose processed set is released after archiving.
        playlist_generator: Owner of the playlist and archive locations.
        publisher: Encoder/publisher (FFmpegPublisher in production).
        event_bus: EventBus for group lifecycle events.
        shutdown_event: Shared cancellation signal (created if omitted).
    """

    def __init__(
        self,
        config: AppConfig,
        catalog: Catalog,
        playlist_generator: PlaylistGenerator,
        publisher: Publisher,
        event_bus: EventBus,
        shutdown_event: Optional[threading.Event] = None,
    ):
        self.config = config
        self.catalog = catalog
        self.playlist_generator = playlist_generator
        self.publisher = publisher
        self.event_bus = event_bus
        self.base_port = config.relay.port
        self.logger = logging.getLogger(__name__)
        self._shutdown_event = shutdown_event if shutdown_event is not None else threading.Event()
        self._units: Dict[str, BroadcastUnit] = {}
        self._units_lock = threading.Lock()

    @property
    def shutdown_requested(self) -> bool:
        return self._shutdown_event.is_set()

    def request_shutdown(self):
        if not self._shutdown_event.is_set():
            self.logger.info("Shutdown requested - stopping streams after the current operation")
        self._shutdown_event.set()

    def build_groups(self, streams: Sequence[Sequence[Path]]) -> List[StreamGroup]:
        groups = []
        for index, files in enumerate(streams):
            groups.append(StreamGroup(
                index=index,
                files=list(files),
                port=self.base_port + index,
                mount=f"{self.config.relay.mount_prefix}{index + 1}",
                identifier=self.playlist_generator.generate_unique_identifier(files) if files else None,
            ))
        return groups

    def start_all(self, streams: Sequence[Sequence[Path]]) -> List[GroupResult]:
        """Streams every group in parallel and waits for all of them.

        Returns one GroupResult per group, in group order. Raises
        StreamingFailed listing every FAILED group once all workers are done.
        """
        if not streams:
            self.logger.error("No streams provided for streaming. Terminating the streaming process.")
            self.event_bus.publish(StreamingFinished(results=[]))
            return []

        groups = self.build_groups(streams)
        self._register_units(groups)
        results: Dict[int, GroupResult] = {}
        self.logger.info(f"Starting {len(groups)} stream(s) on ports {self.base_port}-{self.base_port + len(groups) - 1}")

        with concurrent.futures.ThreadPoolExecutor(max_workers=len(groups), thread_name_prefix="stream") as executor:
            futures = {executor.submit(self._run_group, group): group for group in groups}
            try:
                pending = set(futures)
                while pending:
                    done, pending = concurrent.futures.wait(
                        pending,
                        timeout=1.0,
                        return_when=concurrent.futures.FIRST_COMPLETED
                    )
                    for future in done:
                        group = futures[future]
                        try:
                            results[group.index] = future.result()
                        except Exception as e:
                            self.logger.error(f"Stream worker {group.index} crashed: {e}")
                            self._settle(group, completed=False)
                            results[group.index] = GroupResult(
                                index=group.index,
                                identifier=group.identifier,
                                status=GroupStatus.FAILED,
                                files_total=len(group.files),
                                error_message=str(e),
                            )
            except KeyboardInterrupt:
                self.logger.info("Ctrl+C detected - interrupting active streams...")
                self.request_shutdown()

                # Give running encoders a chance to see the shutdown signal
                deadline = time.monotonic() + 10.0
                while True:
                    running = [future for future in futures if not future.done()]
                    remaining = deadline - time.monotonic()
                    if not running or remaining <= 0:
                        break
                    concurrent.futures.wait(running, timeout=min(0.2, remaining))

                executor.shutdown(wait=False, cancel_futures=True)
                self.logger.info("Streaming was cancelled.")
                raise

        ordered = [results[group.index] for group in groups]
        self.event_bus.publish(StreamingFinished(results=ordered))

        failed = [result for result in ordered if result.status == GroupStatus.FAILED]
        if failed:
            self.logger.error(f"One or more streams encountered errors: {len(failed)}/{len(ordered)} failed")
            for result in failed:
                self.logger.error(f"Stream {result.identifier or result.index} failed: {result.error_message}")
            raise StreamingFailed(failed)

        self.logger.info("All streams finished")
        return ordered

    def _result(self, group: StreamGroup, streamed: int, start: float, error: Optional[str] = None) -> GroupResult:
        return GroupResult(
            index=group.index,
            identifier=group.identifier,
            status=group.status,
            files_total=len(group.files),
            files_streamed=streamed,
            error_message=error,
            duration_seconds=time.monotonic() - start,
        )

    def _run_group(self, group: StreamGroup) -> GroupResult:
        start = time.monotonic()
        name = group.identifier or f"#{group.index}"

        if self.shutdown_requested:
            self.logger.info(f"Stream {name} not started (shutdown requested)")
            group.status = GroupStatus.INTERRUPTED
            self._settle(group, completed=False)
            self.event_bus.publish(GroupInterrupted(group=group))
            return self._result(group, 0, start)

        if not group.files:
            self.logger.warning(f"Stream {name} has no audio files. Skipping this stream.")
            group.status = GroupStatus.SKIPPED
            self.event_bus.publish(GroupSkipped(group=group))
            return self._result(group, 0, start)

        group.status = GroupStatus.STREAMING
        self.logger.info(f"STREAM_START: {name} files={len(group.files)} port={group.port} mount={group.mount}")
        self.event_bus.publish(GroupStarted(group=group))

        streamed = 0
        try:
            for position, audio_file in enumerate(group.files):
                if self.shutdown_requested:
                    raise OperationCancelled(f"Shutdown requested before {audio_file.name}")
                self.event_bus.publish(FileStreamStarted(group=group, file=audio_file, position=position))
                self._publish_with_retry(group, audio_file)
                streamed += 1

            archived = self._post_stream_actions(group)
        except OperationCancelled as e:
            group.status = GroupStatus.INTERRUPTED
            self._settle(group, completed=False)
            self.logger.info(f"STREAM_END: {name} status=interrupted streamed={streamed}/{len(group.files)} ({e})")
            self.event_bus.publish(GroupInterrupted(group=group))
            return self._result(group, streamed, start)
        except Exception as e:
            group.status = GroupStatus.FAILED
            self._settle(group, completed=False)
            self.logger.error(f"An error occurred while streaming {name}: {e}")
            self.logger.info(f"STREAM_END: {name} status=failed streamed={streamed}/{len(group.files)}")
            self.event_bus.publish(GroupFailed(group=group, error_message=str(e)))
            return self._result(group, streamed, start, error=str(e))

        group.status = GroupStatus.COMPLETED
        self.logger.info(f"STREAM_END: {name} status=completed streamed={streamed}")
        self.event_bus.publish(GroupCompleted(group=group, archived_playlist=archived))
        return self._result(group, streamed, start)

    def _wait_backoff(self, delay: float) -> bool:
        """Sleeps before a retry; True means shutdown was requested meanwhile."""
        return self._shutdown_event.wait(delay)

    def _publish_with_retry(self, group: StreamGroup, audio_file: Path):
        retry_config = self.config.retry

        def _on_retry(retry_number: int, delay: float, error: BaseException):
            self.logger.warning(
                f"FFmpeg failed for {audio_file.name} ({error}). "
                f"Waiting {delay:.0f}s before next retry. Retry attempt {retry_number}"
            )
            self.event_bus.publish(PublishRetryScheduled(
                group=group,
                file=audio_file,
                attempt=retry_number,
                delay_seconds=delay,
                error_message=str(error),
            ))

        try:
            call_with_retry(
                lambda: self.publisher.publish(
                    audio_file, group.port, group.mount, shutdown_event=self._shutdown_event
                ),
                max_retries=retry_config.max_retries,
                backoff=exponential_backoff(retry_config.backoff_base),
                wait=self._wait_backoff,
                on_retry=_on_retry,
            )
        except OperationCancelled:
            raise
        except Exception as e:
            raise GroupFailedError(
                f"Giving up on {audio_file.name} after {retry_config.max_retries + 1} attempts: {e}"
            ) from e

    def _register_units(self, groups: Sequence[StreamGroup]):
        units: Dict[str, BroadcastUnit] = {}
        for group in groups:
            if group.identifier is None:
                continue
            units.setdefault(group.identifier, BroadcastUnit(group.identifier)).groups.append(group)
        with self._units_lock:
            self._units = units

    def _settle(self, group: StreamGroup, completed: bool) -> Optional[BroadcastUnit]:
        """Records that a group is done; returns its unit once the whole unit completed."""
        if group.identifier is None:
            return None
        with self._units_lock:
            unit = self._units.get(group.identifier)
            if unit is None:
                unit = self._units[group.identifier] = BroadcastUnit(group.identifier)
                unit.groups.append(group)
            if group.index in unit.settled:
                return None
            unit.settled.add(group.index)
            if not completed:
                unit.broken = True
            if unit.outstanding or unit.broken:
                return None
            return unit

    def _post_stream_actions(self, group: StreamGroup) -> Optional[Path]:
        self.logger.info(f"Stream {group.identifier} has ended")
        unit = self._settle(group, completed=True)
        if unit is None:
            self.logger.info(f"Playlist {group.identifier} is not archived: a stream sharing it is still running or did not complete")
            return None
        archived = self.playlist_generator.archive_playlist(unit.identifier)
        files = unit.files
        released = sum(1 for f in files if self.catalog.remove_from_processed_files(f))
        self.logger.debug(f"Released {released}/{len(files)} files of {unit.identifier} from the catalog")
        return archived
