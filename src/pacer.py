import sys
import time
from datetime import datetime
from typing import Callable, Optional


class Pacer:
    """
    Reproduce the spacing between log timestamps, compressed by `ratio`.

    A record whose timestamp is not after the previous one (duplicate or
    out of order) is dispatched without sleeping. With pacing disabled
    every record goes out immediately and no timestamps are tracked.
    """

    def __init__(
        self,
        ratio: float = 1,
        enabled: bool = True,
        sleep: Optional[Callable[[float], object]] = None,
        debug: bool = False
    ):
        if ratio < 1:
            raise ValueError(f"ratio must be >= 1, got {ratio}")
        self.ratio = ratio
        self.enabled = enabled
        self.debug = debug
        self.last_timestamp: Optional[datetime] = None
        self._sleep = sleep or time.sleep

    def delay_for(self, timestamp: datetime) -> float:
        """
        Seconds to wait before dispatching a record with this timestamp.

        Updates the remembered timestamp as a side effect.
        """
        if not self.enabled:
            return 0.0

        delay = 0.0
        if self.last_timestamp is not None:
            delta = (timestamp - self.last_timestamp).total_seconds()
            if delta > 0:
                delay = delta / self.ratio

        self.last_timestamp = timestamp
        return delay

    def wait(self, timestamp: datetime):
        """
        Sleep until the record with `timestamp` is due.

        Returns whatever the sleep callable returns, so an Event.wait based
        sleep reports whether it was interrupted.
        """
        delay = self.delay_for(timestamp)
        if delay > 0:
            if self.debug:
                print(f"[*] Sleeping for: {delay:.2f} seconds", file=sys.stderr, flush=True)
            return self._sleep(delay)

        if self.debug and self.enabled:
            print("[*] No need for sleep!", file=sys.stderr, flush=True)
        return None
