"""Retry loop with exponential backoff.

The wait between attempts goes through a caller-supplied ``wait`` callable
with ``threading.Event.wait`` semantics: it returns True when the run is being
shut down, which aborts the loop with OperationCancelled instead of retrying.
"""

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from radiocast.domain.errors import OperationCancelled

T = TypeVar("T")

logger = logging.getLogger(__name__)


def exponential_backoff(base: float = 2.0) -> Callable[[int], float]:
    """Delay before retry ``k`` (1-based) is ``base ** k`` seconds."""
    def _delay(retry_number: int) -> float:
        return base ** retry_number
    return _delay


def _sleep(delay: float) -> bool:
    time.sleep(delay)
    return False


def call_with_retry(
    operation: Callable[[], T],
    max_retries: int = 3,
    backoff: Optional[Callable[[int], float]] = None,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    wait: Callable[[float], bool] = _sleep,
    on_retry: Optional[Callable[[int, float, BaseException], None]] = None,
) -> T:
    """Runs ``operation`` up to ``max_retries + 1`` times.

    OperationCancelled is never retried. The last error is re-raised once the
    budget is spent.
    """
    backoff = backoff or exponential_backoff()
    retry_number = 0
    while True:
        try:
            return operation()
        except OperationCancelled:
            raise
        except retry_on as e:
            if retry_number >= max_retries:
                raise
            retry_number += 1
            delay = backoff(retry_number)
            if on_retry is not None:
                on_retry(retry_number, delay, e)
            logger.debug(f"Waiting {delay:.2f}s before retry {retry_number}/{max_retries}")
            if wait(delay):
                raise OperationCancelled("Shutdown requested while waiting to retry") from e
