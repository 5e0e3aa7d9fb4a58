import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class BatchThrottle:
    """
    Sleep-based request batching.

    Allows ``batch_size`` requests, then waits until ``interval`` seconds
    have passed since the first request of the batch before the next batch
    starts. Keeps bulk device queries under the directory API quota.
    """

    def __init__(
        self,
        batch_size: int,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.batch_size = batch_size
        self.interval = interval
        self.clock = clock
        self.sleep = sleep
        self.count = 0
        self.batch_start = None

    def wait(self) -> None:
        """Call before each request."""
        if self.batch_start is None:
            self.batch_start = self.clock()

        if self.count >= self.batch_size:
            remaining = self.interval - (self.clock() - self.batch_start)
            if remaining > 0:
                logger.debug(f"Throttling for {remaining:.1f}s after {self.count} requests")
                self.sleep(remaining)
            self.count = 0
            self.batch_start = self.clock()

        self.count += 1
