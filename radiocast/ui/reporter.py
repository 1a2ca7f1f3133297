import threading
from typing import Optional

from rich.console import Console
from rich.table import Table

from radiocast.domain.events import (
    DiscoveryFinished, PlaylistsGenerated,
    GroupStarted, GroupCompleted, GroupFailed, GroupSkipped, GroupInterrupted,
    PublishRetryScheduled, StreamingFinished,
)
from radiocast.domain.models import GroupStatus
from radiocast.infrastructure.event_bus import EventBus

STATUS_STYLES = {
    GroupStatus.COMPLETED: "green",
    GroupStatus.FAILED: "red",
    GroupStatus.SKIPPED: "yellow",
    GroupStatus.INTERRUPTED: "yellow",
}


class ConsoleReporter:
    """Subscribes to EventBus and prints operator-facing progress lines."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None):
        self.bus = bus
        self.console = console or Console()
        self._lock = threading.Lock()
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(PlaylistsGenerated, self.on_playlists_generated)
        self.bus.subscribe(GroupStarted, self.on_group_started)
        self.bus.subscribe(PublishRetryScheduled, self.on_retry_scheduled)
        self.bus.subscribe(GroupCompleted, self.on_group_completed)
        self.bus.subscribe(GroupFailed, self.on_group_failed)
        self.bus.subscribe(GroupSkipped, self.on_group_skipped)
        self.bus.subscribe(GroupInterrupted, self.on_group_interrupted)
        self.bus.subscribe(StreamingFinished, self.on_streaming_finished)

    def _print(self, message: str):
        # Worker threads report concurrently
        with self._lock:
            self.console.print(message)

    def on_discovery_finished(self, event: DiscoveryFinished):
        self._print(
            f"Found {event.files_found} new file(s): {event.files_to_stream} to stream, "
            f"{event.already_streamed} already streamed"
        )
        if event.files_to_stream == 0:
            self._print("[yellow]No valid (or new) audio files found.[/yellow]")

    def on_playlists_generated(self, event: PlaylistsGenerated):
        for identifier in event.skipped:
            self._print(f"[yellow]This playlist was already streamed: {identifier}.[/yellow]")
        self._print(f"Playlists written: {len(event.identifiers)}")

    def on_group_started(self, event: GroupStarted):
        group = event.group
        self._print(f"[cyan]▶[/cyan] {group.identifier} → {group.mount}:{group.port} ({len(group.files)} files)")

    def on_retry_scheduled(self, event: PublishRetryScheduled):
        self._print(
            f"[yellow]FFmpeg failed on {event.file.name}. Waiting {event.delay_seconds:.0f}s "
            f"before next retry. Retry attempt {event.attempt}[/yellow]"
        )

    def on_group_completed(self, event: GroupCompleted):
        self._print(f"[green]✓[/green] Stream {event.group.identifier} has ended")

    def on_group_failed(self, event: GroupFailed):
        self._print(f"[red]✗ Stream {event.group.identifier} failed: {event.error_message}[/red]")

    def on_group_skipped(self, event: GroupSkipped):
        self._print(f"[yellow]Stream #{event.group.index} has no audio files. Skipping this stream.[/yellow]")

    def on_group_interrupted(self, event: GroupInterrupted):
        name = event.group.identifier or f"#{event.group.index}"
        self._print(f"[yellow]Stream {name} was interrupted.[/yellow]")

    def on_streaming_finished(self, event: StreamingFinished):
        if not event.results:
            return
        table = Table(title="Streams")
        table.add_column("#", justify="right")
        table.add_column("Playlist")
        table.add_column("Status")
        table.add_column("Files", justify="right")
        for result in event.results:
            style = STATUS_STYLES.get(result.status, "white")
            table.add_row(
                str(result.index + 1),
                result.identifier or "-",
                f"[{style}]{result.status.value}[/{style}]",
                f"{result.files_streamed}/{result.files_total}",
            )
        with self._lock:
            self.console.print(table)
