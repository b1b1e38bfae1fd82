import queue
import sys
import threading
from collections import deque
from typing import Optional


WARMING = 'warming'
ARMED = 'armed'


class MovingAverage:
    """Simple moving average over the last `size` samples."""

    def __init__(self, size: int):
        if size < 1:
            raise ValueError(f"window size must be positive, got {size}")
        self.size = size
        self._samples = deque(maxlen=size)
        self._total = 0

    def add(self, value: int):
        if len(self._samples) == self.size:
            self._total -= self._samples[0]
        self._samples.append(value)
        self._total += value

    def average(self) -> Optional[float]:
        if not self._samples:
            return None
        return self._total / len(self._samples)

    def __len__(self):
        return len(self._samples)


class WindowMonitor:
    """
    Circuit breaker over the most recent request outcomes.

    Samples are 0 (request completed, any status code) or 1 (request
    failed). The breaker only trips once `window_size` samples have been
    seen; from then on it trips as soon as the failure average reaches
    error_rate percent.
    """

    def __init__(self, window_size: int, error_rate: float):
        if not 0 < error_rate < 100:
            raise ValueError(f"error rate must be between 0 and 100, got {error_rate}")
        self.window_size = window_size
        self.threshold = error_rate / 100
        self.moving_average = MovingAverage(window_size)
        self.observed = 0
        self.tripped = False

    @property
    def state(self) -> str:
        return ARMED if self.observed >= self.window_size else WARMING

    def add(self, sample: int) -> bool:
        """Fold one sample in; returns True when the breaker trips."""
        self.observed += 1
        self.moving_average.add(sample)

        if self.state == ARMED and self.moving_average.average() >= self.threshold:
            self.tripped = True
        return self.tripped


def window_loop(
    window_queue: queue.Queue,
    monitor: WindowMonitor,
    abort_event: threading.Event
):
    """
    Consume window samples until a None sentinel arrives or the breaker trips.

    Tripping sets `abort_event`; the replay driver reacts to it.
    """
    while True:
        sample = window_queue.get()
        if sample is None:
            break

        if monitor.add(sample):
            print(
                f"[!] Error rate {monitor.moving_average.average():.1%} over the last "
                f"{monitor.window_size} requests reached {monitor.threshold:.0%}, aborting replay",
                file=sys.stderr, flush=True
            )
            abort_event.set()
            break
