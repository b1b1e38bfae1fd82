import csv
import queue
import signal
import sys
import threading
import time
from datetime import datetime
from typing import Callable, Iterable, Optional, TextIO, Tuple

import psutil
import requests

from src.config import ReplayConfig
from src.dispatcher import create_session, fire_request
from src.pacer import Pacer
from src.records import Record
from src.window import WindowMonitor, window_loop


EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_FATAL = 2
EXIT_INTERRUPTED = 130

METRICS_HEADER = [
    'timestamp', 'runtime_sec', 'dispatched', 'results_written', 'in_flight',
    'failed', 'cpu_percent', 'memory_mb', 'throughput_rps'
]


class InFlightTracker:
    """
    Join point for the dispatch threads.

    Counts every spawned task until it returns. With a positive `limit`
    at most that many tasks run at once; 0 means no cap.
    """

    def __init__(self, limit: int = 0):
        self._cond = threading.Condition()
        self._slots = threading.BoundedSemaphore(limit) if limit > 0 else None
        self.started = 0
        self.in_flight = 0

    def acquire_slot(self, abort_event: threading.Event, poll: float = 0.1) -> bool:
        """Block until a task may start; False if the run was aborted meanwhile."""
        if self._slots is None:
            return True
        while not self._slots.acquire(timeout=poll):
            if abort_event.is_set():
                return False
        return True

    def spawn(self, target: Callable, *args):
        with self._cond:
            self.started += 1
            self.in_flight += 1

        thread = threading.Thread(target=self._run, args=(target, args), daemon=True)
        try:
            thread.start()
        except RuntimeError:
            self._finish()
            raise

    def _run(self, target: Callable, args: tuple):
        try:
            target(*args)
        finally:
            self._finish()

    def _finish(self):
        if self._slots is not None:
            self._slots.release()
        with self._cond:
            self.in_flight -= 1
            if self.in_flight == 0:
                self._cond.notify_all()

    def wait(self, abort_event: Optional[threading.Event] = None, poll: float = 0.1) -> bool:
        """
        Wait until no task is running.

        Returns False if `abort_event` got set before that happened.
        """
        with self._cond:
            while self.in_flight > 0:
                if abort_event is not None and abort_event.is_set():
                    return False
                self._cond.wait(poll)
        return True


class ResultLogger:
    """Single consumer writing ResultRecords to the sink in arrival order."""

    def __init__(self, result_queue: queue.Queue, sink: TextIO, close_sink: bool = False):
        self.result_queue = result_queue
        self.sink = sink
        self.close_sink = close_sink
        self.written = 0
        self.failed = 0
        self.error: Optional[OSError] = None

    def run(self):
        """Drain the queue until a None sentinel, then flush or close the sink."""
        try:
            while True:
                result = self.result_queue.get()
                if result is None:
                    break

                self.sink.write(result.to_line())
                self.written += 1
                if result.failed:
                    self.failed += 1
        except OSError as e:
            self.error = e
            print(f"[ERROR] Writing result log failed: {e}", file=sys.stderr, flush=True)
        finally:
            if self.close_sink:
                self.sink.close()
            else:
                self.sink.flush()


def open_sink(log_file: str) -> Tuple[TextIO, bool]:
    """
    Open the result log.

    Returns:
        (stream, whether the logger should close it)
    """
    if log_file == '-':
        return sys.stdout, False
    return open(log_file, 'w', encoding='utf-8', newline=''), True


def metrics_collector(
    tracker: InFlightTracker,
    logger: ResultLogger,
    metrics_file: str,
    stop_event: threading.Event,
    interval: float = 5
):
    """
    Sample replay progress and process resources into a CSV until stopped.

    Args:
        tracker: Dispatch task tracker (dispatched / in-flight counts)
        logger: Result logger (written / failed counts)
        metrics_file: Output CSV file
        stop_event: Set to stop collecting; one last row is written
        interval: Collection interval in seconds
    """
    process = psutil.Process()
    start_time = time.time()
    process.cpu_percent(interval=None)

    with open(metrics_file, 'w', newline='') as f:
        writer = csv.writer(f)
        writer.writerow(METRICS_HEADER)

        while True:
            stopped = stop_event.wait(interval)

            runtime = time.time() - start_time
            memory = process.memory_info().rss / 1024 / 1024  # MB
            throughput = logger.written / runtime if runtime > 0 else 0

            writer.writerow([
                datetime.now().isoformat(),
                f"{runtime:.1f}",
                tracker.started,
                logger.written,
                tracker.in_flight,
                logger.failed,
                f"{process.cpu_percent(interval=None):.1f}",
                f"{memory:.1f}",
                f"{throughput:.1f}"
            ])
            f.flush()

            if stopped:
                break


def _print_summary(tracker: InFlightTracker, logger: ResultLogger, runtime: float):
    err = sys.stderr
    throughput = logger.written / runtime if runtime > 0 else 0
    print("=" * 60, file=err)
    print("[*] Replay Summary", file=err)
    print("=" * 60, file=err)
    print(f"Runtime: {runtime:.1f}s", file=err)
    print(f"Requests dispatched: {tracker.started:,}", file=err)
    print(f"Results written: {logger.written:,}", file=err)
    print(f"Failed requests: {logger.failed:,}", file=err)
    print(f"Throughput: {throughput:.1f} requests/sec", file=err)
    print("=" * 60, file=err, flush=True)


def run_replay(
    records: Iterable[Record],
    config: ReplayConfig,
    sink: Optional[TextIO] = None,
    session: Optional[requests.Session] = None
) -> int:
    """
    Replay `records` against config.prefix and return the exit code.

    Records are paced by their timestamps and each one is fired on its own
    thread. Results go through a single logger thread; the optional window
    monitor aborts the run when the error rate gets too high. When called
    from the main thread, Ctrl+C aborts the run the same way.

    Shutdown on end of input happens in two steps: wait for every dispatch
    thread, then close the result queue and wait for the logger to drain.
    An abort skips both and returns immediately.

    Args:
        records: Record source; exhaustion means end of input, any
            exception raised while reading is fatal
        config: Replay settings
        sink: Result stream; when None config.log_file is opened
        session: HTTP session; when None one is built from config

    Returns:
        EXIT_OK, EXIT_ABORTED (circuit breaker), EXIT_FATAL (input error)
        or EXIT_INTERRUPTED (SIGINT)
    """
    abort_event = threading.Event()
    interrupted = threading.Event()

    def signal_handler(signum, frame):
        """Handle SIGINT (Ctrl+C) by aborting the replay."""
        print("\n[!] Shutdown signal received. Aborting replay...", file=sys.stderr, flush=True)
        interrupted.set()
        abort_event.set()

    if threading.current_thread() is not threading.main_thread():
        return _replay(records, config, sink, session, abort_event, interrupted)

    previous_handler = signal.signal(signal.SIGINT, signal_handler)
    try:
        return _replay(records, config, sink, session, abort_event, interrupted)
    finally:
        signal.signal(signal.SIGINT, previous_handler)


def _replay(
    records: Iterable[Record],
    config: ReplayConfig,
    sink: Optional[TextIO],
    session: Optional[requests.Session],
    abort_event: threading.Event,
    interrupted: threading.Event
) -> int:
    start = time.time()
    close_sink = False
    if sink is None:
        sink, close_sink = open_sink(config.log_file)
    if session is None:
        session = create_session(config)

    result_queue = queue.Queue()

    logger = ResultLogger(result_queue, sink, close_sink)
    logger_thread = threading.Thread(target=logger.run, name='result-logger', daemon=True)
    logger_thread.start()

    window_queue = None
    window_thread = None
    if config.enable_window:
        window_queue = queue.Queue()
        monitor = WindowMonitor(config.window_size, config.error_rate)
        window_thread = threading.Thread(
            target=window_loop,
            args=(window_queue, monitor, abort_event),
            name='window-monitor',
            daemon=True
        )
        window_thread.start()

    tracker = InFlightTracker(config.max_in_flight)

    stop_metrics = threading.Event()
    metrics_thread = None
    if config.metrics_file:
        metrics_thread = threading.Thread(
            target=metrics_collector,
            args=(tracker, logger, config.metrics_file, stop_metrics, config.metrics_interval),
            name='metrics-collector',
            daemon=True
        )
        metrics_thread.start()

    def aborted() -> int:
        stop_metrics.set()
        print(f"[!] Replay aborted: {tracker.started:,} requests dispatched, "
              f"{logger.written:,} results written", file=sys.stderr, flush=True)
        return EXIT_INTERRUPTED if interrupted.is_set() else EXIT_ABORTED

    pacer = Pacer(config.ratio, enabled=not config.skip_sleep, sleep=abort_event.wait, debug=config.debug)
    source = iter(records)

    while True:
        try:
            record = next(source)
        except StopIteration:
            if config.debug:
                print("[*] Reached EOF", file=sys.stderr, flush=True)
            break
        except Exception as e:
            stop_metrics.set()
            print(f"[ERROR] Reading input failed: {e}", file=sys.stderr, flush=True)
            return EXIT_FATAL

        pacer.wait(record.timestamp)
        if abort_event.is_set():
            return aborted()
        if not tracker.acquire_slot(abort_event):
            return aborted()

        tracker.spawn(fire_request, session, record, config, result_queue, window_queue)

    if config.debug:
        print("[*] Waiting for all http requests to finish", file=sys.stderr, flush=True)
    if not tracker.wait(abort_event):
        return aborted()

    if window_thread is not None:
        window_queue.put(None)
        window_thread.join()
        if abort_event.is_set():
            return aborted()

    result_queue.put(None)
    if config.debug:
        print("[*] Waiting for result logger to finish", file=sys.stderr, flush=True)
    logger_thread.join()

    stop_metrics.set()
    if metrics_thread is not None:
        metrics_thread.join()

    if logger.error is not None:
        return EXIT_FATAL

    _print_summary(tracker, logger, time.time() - start)
    return EXIT_OK
