import threading
import pytest
import yaml
from pathlib import Path
from typing import List, Optional
from radiocast.config.models import AppConfig
from radiocast.domain.errors import OperationCancelled, PublishError
from radiocast.infrastructure.event_bus import EventBus

# ============================================================================
# Archive Fixtures
# ============================================================================

def make_audio(root: Path, source: str, year: str, month: str, day: str, name: str, content: bytes = b"audio data") -> Path:
    """Creates root/source/year/month/day/name and returns its path."""
    day_dir = root / source / year / month / day
    day_dir.mkdir(parents=True, exist_ok=True)
    path = day_dir / name
    path.write_bytes(content)
    return path


@pytest.fixture
def audio_root(tmp_path):
    """Archive root; named after the default root marker."""
    root = tmp_path / "Rai"
    root.mkdir()
    return root


@pytest.fixture
def playlist_root(tmp_path):
    return tmp_path / "playlists"


@pytest.fixture
def rai1_day(audio_root):
    """Three valid AAC recordings for hour 05 of RAI1_AAC/2024/03/05."""
    return [
        make_audio(audio_root, "RAI1_AAC", "2024", "03", "05", f"0500_rai1_05{minute}00.aac")
        for minute in ("00", "20", "40")
    ]

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def sample_config(audio_root, playlist_root):
    """Returns a sample AppConfig pointing at the temporary archive."""
    return AppConfig(
        general={
            "audio_root": str(audio_root),
            "playlist_root": str(playlist_root),
            "max_streams": 2,
            "debug": False,
        },
        relay={
            "host": "relay.example",
            "port": 8083,
            "username": "source",
            "password": "secret",
        },
        retry={"max_retries": 3, "backoff_base": 2.0},
    )


@pytest.fixture
def config_yaml_path(tmp_path, audio_root, playlist_root):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "radiocast.yaml"

    content = {
        'general': {
            'audio_root': str(audio_root),
            'playlist_root': str(playlist_root),
            'max_streams': 1,
            'log_path': str(tmp_path / "logs" / "radiocast.log"),
            'debug': False,
        },
        'relay': {
            'host': 'relay.example',
            'port': 9000,
            'password': 'secret',
        },
        'retry': {
            'max_retries': 2,
            'backoff_base': 2.0,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# EventBus / Publisher Fixtures
# ============================================================================

@pytest.fixture
def event_bus():
    """Returns a fresh EventBus instance."""
    return EventBus()


class FakePublisher:
    """Stands in for FFmpegPublisher.

    ``failures`` maps a file name to how many times publishing it fails
    before succeeding (use a large number to fail forever).
    """

    def __init__(self, failures: Optional[dict] = None, cancel_on: Optional[str] = None):
        self.failures = dict(failures or {})
        self.cancel_on = cancel_on
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def publish(self, audio_file, port, mount, shutdown_event=None):
        with self._lock:
            self.calls.append((Path(audio_file).name, port, mount))
            remaining = self.failures.get(Path(audio_file).name, 0)
            if remaining > 0:
                self.failures[Path(audio_file).name] = remaining - 1
        if self.cancel_on == Path(audio_file).name:
            raise OperationCancelled("interrupted")
        if remaining > 0:
            raise PublishError("ffmpeg exited with code 1", returncode=1)

    def published(self, mount=None) -> List[str]:
        with self._lock:
            return [name for name, _, m in self.calls if mount is None or m == mount]


@pytest.fixture
def fake_publisher():
    return FakePublisher()


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
