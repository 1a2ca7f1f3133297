import signal
import threading
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError

from radiocast.config.loader import load_config
from radiocast.config.models import AppConfig
from radiocast.domain.errors import BroadcastWindowClosed, IdentifierError, StreamingFailed
from radiocast.infrastructure.event_bus import EventBus
from radiocast.infrastructure.ffmpeg import FFmpegPublisher, ProcessRegistry
from radiocast.infrastructure.file_catalog import FileCatalog
from radiocast.infrastructure.logging import setup_logging
from radiocast.infrastructure.relay_check import is_relay_running
from radiocast.pipeline.playlist_generator import PlaylistGenerator
from radiocast.pipeline.schedule import wait_for_window
from radiocast.pipeline.stream_manager import StreamManager
from radiocast.ui.reporter import ConsoleReporter

app = typer.Typer(help="radiocast - stream archived radio recordings to an Icecast relay")


def _load_config_or_exit(config_path: Path) -> AppConfig:
    try:
        return load_config(config_path)
    except (FileNotFoundError, ValidationError) as exc:
        typer.secho(f"Error: invalid configuration: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)


def _report_invalid_files(catalog: FileCatalog):
    if catalog.invalid_files:
        typer.secho("List of invalid files:", fg=typer.colors.YELLOW, err=True)
        for invalid_file in catalog.invalid_files:
            typer.echo(str(invalid_file), err=True)


@app.command()
def stream(
    config_path: Path = typer.Option(Path("conf/radiocast.yaml"), "--config", "-c", help="Path to YAML config"),
    max_streams: Optional[int] = typer.Option(None, "--max-streams", "-n", help="Override number of output channels"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    skip_relay_check: bool = typer.Option(False, "--skip-relay-check", help="Do not check the relay before starting"),
    debug: bool = typer.Option(False, "--debug/--no-debug", help="Enable verbose debug logging"),
):
    """Catalog the archive, write playlists and stream every new channel."""
    config = _load_config_or_exit(config_path)
    if max_streams is not None:
        if max_streams <= 0:
            typer.secho("Error: --max-streams must be greater than zero.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        config.general.max_streams = max_streams
    if log_path is not None: config.general.log_path = str(log_path)
    if debug: config.general.debug = True

    shutdown_event = threading.Event()
    previous_sigterm = None

    try:
        playlist_dir = Path(config.general.playlist_root)
        log_path_value = Path(config.general.log_path) if config.general.log_path else None
        logger = setup_logging(
            playlist_dir,
            debug=config.general.debug,
            log_path=log_path_value,
            max_bytes=config.general.log_max_bytes,
            backup_count=config.general.log_backup_count,
        )
        logger.info(
            f"radiocast started: audio_root={config.general.audio_root}, "
            f"playlist_root={playlist_dir}, max_streams={config.general.max_streams}"
        )

        relay = config.relay
        if not skip_relay_check and not is_relay_running(relay.check_host, relay.check_port, relay.check_timeout_s):
            logger.error(f"Relay is not running at {relay.check_host}:{relay.check_port}")
            typer.secho("Icecast is not running. Please start the service.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)

        def _on_sigterm(signum, frame):
            logger.info("SIGTERM received - stopping streams")
            shutdown_event.set()

        previous_sigterm = signal.signal(signal.SIGTERM, _on_sigterm)

        bus = EventBus()
        ConsoleReporter(bus)

        catalog = FileCatalog(Path(config.general.audio_root), config.catalog)
        if not catalog.validate():
            logger.error("File validation failed. Terminating application.")
            typer.secho("File validation failed.", fg=typer.colors.RED, err=True)
            _report_invalid_files(catalog)
            raise typer.Exit(code=1)
        _report_invalid_files(catalog)

        if not wait_for_window(config.general.start_date, config.general.end_date, shutdown_event):
            raise typer.Exit(code=130)

        registry = ProcessRegistry()
        publisher = FFmpegPublisher(relay, registry=registry, debug=config.general.debug)
        generator = PlaylistGenerator(
            playlist_dir,
            catalog,
            config.general.max_streams,
            root_marker=config.catalog.root_marker,
            event_bus=bus,
        )
        manager = StreamManager(
            config=config,
            catalog=catalog,
            playlist_generator=generator,
            publisher=publisher,
            event_bus=bus,
            shutdown_event=shutdown_event,
        )

        files = generator.load_and_sort()
        streams = generator.divide_into_streams(files)
        accepted = generator.generate_playlists(streams)

        try:
            manager.start_all(accepted)
        finally:
            registry.terminate_all()

        if shutdown_event.is_set():
            typer.secho("\nStreaming stopped by request", fg=typer.colors.YELLOW)
            raise typer.Exit(code=130)

    except KeyboardInterrupt:
        typer.secho("\n✓ Streaming stopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)

    except typer.Exit:
        raise

    except (StreamingFailed, BroadcastWindowClosed, IdentifierError) as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    except Exception as e:
        with open("error.log", "a") as f:
            import traceback
            traceback.print_exc(file=f)
        typer.secho(f"Fatal Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    finally:
        if previous_sigterm is not None:
            signal.signal(signal.SIGTERM, previous_sigterm)


@app.command()
def validate(
    config_path: Path = typer.Option(Path("conf/radiocast.yaml"), "--config", "-c", help="Path to YAML config"),
):
    """Check the archive layout without streaming anything."""
    config = _load_config_or_exit(config_path)
    catalog = FileCatalog(Path(config.general.audio_root), config.catalog)
    ok = catalog.validate()
    _report_invalid_files(catalog)
    if not ok:
        typer.secho("File validation failed.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    typer.secho(
        f"Archive OK: {catalog.last_file_count} valid file(s), {len(catalog.invalid_files)} invalid",
        fg=typer.colors.GREEN,
    )


if __name__ == "__main__":
    app()
