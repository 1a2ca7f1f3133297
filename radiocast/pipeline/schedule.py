import logging
import threading
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from radiocast.domain.errors import BroadcastWindowClosed

logger = logging.getLogger(__name__)


def window_bounds(start_date: Optional[date], end_date: Optional[date]):
    """Start is midnight of start_date; end_date is inclusive (until its last second)."""
    start = datetime.combine(start_date, time.min) if start_date else None
    end = datetime.combine(end_date + timedelta(days=1), time.min) if end_date else None
    return start, end


def wait_for_window(
    start_date: Optional[date],
    end_date: Optional[date],
    shutdown_event: threading.Event,
    now: Callable[[], datetime] = datetime.now,
) -> bool:
    """Blocks until the broadcast window opens.

    Returns False if shutdown was requested while waiting. Raises
    BroadcastWindowClosed when the window is already over.
    """
    start, end = window_bounds(start_date, end_date)
    current = now()

    if end is not None and current >= end:
        raise BroadcastWindowClosed(
            f"Current date is beyond the end date for streaming ({end_date:%Y-%m-%d})"
        )

    if start is not None and start > current:
        delay = (start - current).total_seconds()
        logger.info(f"Waiting until {start:%d/%m/%Y %H:%M:%S} to start streaming ({delay:.0f}s)")
        if shutdown_event.wait(delay):
            logger.info("Shutdown requested while waiting for the broadcast window")
            return False

    if end is not None:
        logger.info(f"Start streaming, but don't stream files beyond {end:%d/%m/%Y %H:%M:%S}")
    logger.info("Start streaming...")
    return True
