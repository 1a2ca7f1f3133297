import logging
import logging.handlers
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


def setup_logging(
    log_dir: Path,
    debug: bool = False,
    log_path: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Setup logging configuration for radiocast.

    radiocast is re-run against the same playlist root, so the log file is
    size-rotated (radiocast.log, radiocast.log.1, ...) instead of growing
    forever. Returns configured logger instance.

    Args:
        log_dir: Directory for radiocast.log (normally the playlist root)
        debug: If True, enable DEBUG level logging (encoder output lines included)
        log_path: Optional path to log file (overrides log_dir)
        max_bytes: Rotate once the file reaches this size; 0 never rotates
        backup_count: Number of rotated files kept next to the log
    """
    log_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (log_dir / "radiocast.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO
    handler = logging.handlers.RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[handler],
        force=True
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'}, playlist_root={log_dir})")

    return logger
