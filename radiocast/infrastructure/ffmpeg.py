import logging
import queue
import subprocess
import threading
import time
from pathlib import Path
from typing import List, Optional
from urllib.parse import quote

from radiocast.config.models import RelayConfig
from radiocast.domain.errors import OperationCancelled, PublishError
from radiocast.domain.models import CodecProfile

AAC_PROFILE = CodecProfile(codec="libfdk_aac", container="adts", content_type="audio/aac")
WMA_PROFILE = CodecProfile(codec="wmav2", container="asf", content_type="audio/x-ms-wma")
MP3_PROFILE = CodecProfile(codec="libmp3lame", container="mp3", content_type="audio/mpeg")


def select_codec_profile(audio_file: Path) -> CodecProfile:
    """Picks the output codec by source extension; anything unknown goes out as MP3."""
    suffix = Path(audio_file).suffix.lower()
    if suffix == ".aac":
        return AAC_PROFILE
    if suffix == ".wma":
        return WMA_PROFILE
    return MP3_PROFILE


def is_error_line(line: str) -> bool:
    return "Error" in line or "ERR" in line


class ProcessRegistry:
    """Encoder processes currently running, shared by all stream workers."""

    def __init__(self):
        self._processes: List[subprocess.Popen] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def add(self, process: subprocess.Popen):
        with self._lock:
            self._processes.append(process)

    def remove(self, process: subprocess.Popen) -> bool:
        with self._lock:
            try:
                self._processes.remove(process)
                return True
            except ValueError:
                return False

    def snapshot(self) -> List[subprocess.Popen]:
        with self._lock:
            return list(self._processes)

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

    def terminate_all(self, timeout: float = 3.0) -> int:
        """Terminates every registered process, killing the ones that linger."""
        processes = self.snapshot()
        for process in processes:
            if process.poll() is None:
                process.terminate()
        for process in processes:
            try:
                process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            self.remove(process)
        if processes:
            self.logger.info(f"Terminated {len(processes)} encoder process(es)")
        return len(processes)


class FFmpegPublisher:
    """Re-encodes a local audio file and pushes it live to an Icecast mount."""

    def __init__(self, relay: RelayConfig, registry: Optional[ProcessRegistry] = None, debug: bool = False):
        self.relay = relay
        self.registry = registry if registry is not None else ProcessRegistry()
        self.debug = debug
        self.output_level = logging.INFO if debug else logging.DEBUG
        self.logger = logging.getLogger(__name__)

    def target_url(self, port: int, mount: str, mask_password: bool = False) -> str:
        password = "***" if mask_password else quote(self.relay.password, safe="")
        user = quote(self.relay.username, safe="")
        return f"icecast://{user}:{password}@{self.relay.host}:{port}/{mount}"

    def _build_command(self, audio_file: Path, port: int, mount: str, mask_password: bool = False) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        profile = select_codec_profile(audio_file)
        cmd = ["ffmpeg", "-hide_banner", "-nostdin"]
        if self.relay.realtime:
            cmd.append("-re")  # Pace reading at native rate, this is a live broadcast
        cmd.extend([
            "-i", str(audio_file),
            "-acodec", profile.codec,
            "-ab", self.relay.bitrate,
            "-ac", str(self.relay.channels),
            "-content_type", profile.content_type,
            "-f", profile.container,
            self.target_url(port, mount, mask_password=mask_password),
        ])
        return cmd

    def publish(self, audio_file: Path, port: int, mount: str, shutdown_event: Optional[threading.Event] = None):
        """Streams one file and blocks until ffmpeg exits.

        Raises PublishError on start failure or non-zero exit so the caller's
        retry loop sees it, and OperationCancelled if shutdown_event fires.
        """
        filename = Path(audio_file).name
        start_time = time.monotonic()
        cmd = self._build_command(audio_file, port, mount)
        self.logger.info(
            f"PUBLISH_START: {filename} -> {mount}:{port} "
            f"({' '.join(self._build_command(audio_file, port, mount, mask_password=True))})"
        )

        try:
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
                bufsize=1
            )
        except OSError as e:
            raise PublishError(f"Failed to start ffmpeg for {filename}: {e}") from e

        self.registry.add(process)
        output_queue: "queue.Queue[Optional[str]]" = queue.Queue()

        def _reader():
            if not process.stdout:
                output_queue.put(None)
                return
            for line in process.stdout:
                output_queue.put(line)
            output_queue.put(None)

        reader_thread = threading.Thread(target=_reader, daemon=True)
        reader_thread.start()

        try:
            while True:
                if shutdown_event is not None and shutdown_event.is_set():
                    self.logger.info(f"PUBLISH_INTERRUPTED: {filename} (shutdown signal)")
                    self._stop(process)
                    raise OperationCancelled(f"Publishing of {filename} was interrupted")

                try:
                    line = output_queue.get(timeout=0.1)
                except queue.Empty:
                    if process.poll() is not None:
                        # Exited; pick up whatever the reader has not queued yet
                        reader_thread.join(timeout=5.0)
                        self._drain(output_queue, mount)
                        break
                    continue

                if line is None:
                    break
                self._log_line(line, mount)

            process.wait()
        finally:
            self.registry.remove(process)

        elapsed = time.monotonic() - start_time
        if process.returncode != 0:
            self.logger.info(f"PUBLISH_END: {filename} status=failed code={process.returncode} elapsed={elapsed:.2f}s")
            raise PublishError(f"ffmpeg exited with code {process.returncode} for {filename}", process.returncode)

        self.logger.info(f"PUBLISH_END: {filename} status=completed elapsed={elapsed:.2f}s")

    def _log_line(self, line: str, mount: str):
        line = line.rstrip()
        if not line:
            return
        if is_error_line(line):
            self.logger.error(f"FFmpeg Error ({mount}): {line}")
        else:
            self.logger.log(self.output_level, f"FFmpeg Output ({mount}): {line}")

    def _drain(self, output_queue: "queue.Queue[Optional[str]]", mount: str):
        while True:
            try:
                line = output_queue.get_nowait()
            except queue.Empty:
                return
            if line is None:
                return
            self._log_line(line, mount)

    def _stop(self, process: subprocess.Popen):
        process.terminate()
        try:
            process.wait(timeout=3)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
