import queue
import re
import socket
import sys
import threading
import time
from typing import Optional

import requests
import urllib3
from requests.adapters import HTTPAdapter
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from src.config import ReplayConfig
from src.records import Record, ResultRecord


# Idle connections kept per host pool
MAX_IDLE_CONNS = 10

# Seconds a pooled connection may sit unused before it is dropped
IDLE_CONN_TIMEOUT = 10

FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'

_METHOD = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


class IdleTimeoutMixin:
    """Close pooled connections that were idle longer than `idle_timeout`."""

    idle_timeout = IDLE_CONN_TIMEOUT

    def _put_conn(self, conn):
        if conn is not None:
            conn.idle_since = time.monotonic()
        super()._put_conn(conn)

    def _get_conn(self, timeout=None):
        conn = super()._get_conn(timeout)
        idle_since = getattr(conn, 'idle_since', None)
        if idle_since is not None and time.monotonic() - idle_since > self.idle_timeout:
            # reconnects on next use, like a dropped connection
            conn.close()
        return conn


class IdleHTTPConnectionPool(IdleTimeoutMixin, HTTPConnectionPool):
    pass


class IdleHTTPSConnectionPool(IdleTimeoutMixin, HTTPSConnectionPool):
    pass


class ReplayAdapter(HTTPAdapter):
    """HTTPAdapter whose pools expire idle connections."""

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            'http': IdleHTTPConnectionPool,
            'https': IdleHTTPSConnectionPool,
        }


def create_session(config: ReplayConfig) -> requests.Session:
    """
    Build the HTTP session shared by every dispatch task.

    Connections beyond the pool size are opened as needed and discarded
    after use, so the pool never limits concurrency. Pooled connections
    unused for IDLE_CONN_TIMEOUT seconds are closed before reuse.
    """
    session = requests.Session()
    adapter = ReplayAdapter(pool_connections=MAX_IDLE_CONNS, pool_maxsize=MAX_IDLE_CONNS)
    session.mount('http://', adapter)
    session.mount('https://', adapter)

    if config.ssl_skip_verify:
        session.verify = False
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    return session


def build_request(
    session: requests.Session,
    record: Record,
    config: ReplayConfig
) -> requests.PreparedRequest:
    """
    Prepare the HTTP request replaying `record` against the configured prefix.

    Raises:
        ValueError: for an invalid method or a user agent that cannot be
            sent as a latin-1 header value
        requests.exceptions.RequestException: for a malformed URL or header
    """
    if not _METHOD.match(record.method):
        raise ValueError(f'invalid method "{record.method}"')

    try:
        record.user_agent.encode('latin-1')
    except UnicodeEncodeError:
        raise ValueError(f'user agent {record.user_agent!r} is not a valid header value')

    headers = {'User-Agent': record.user_agent or None}
    if record.method == 'POST':
        headers['Content-Type'] = FORM_CONTENT_TYPE

    request = requests.Request(
        method=record.method,
        url=config.prefix + record.path,
        headers=headers,
        data=record.payload.encode('utf-8') if record.payload else None,
        auth=config.basic_auth,
    )
    return session.prepare_request(request)


def _cut_off(response: requests.Response):
    """Unblock a body read in progress on another thread."""
    conn = getattr(response.raw, '_connection', None)
    sock = getattr(conn, 'sock', None)
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # already closed by the peer
            pass


def _drain(response: requests.Response, deadline: Optional[float]):
    """
    Read and discard the body so the connection goes back to the pool.

    A timer cuts the connection when `deadline` passes, so a body sent in
    small pieces cannot outlive the request timeout.
    """
    expired = threading.Event()
    timer = None
    if deadline is not None:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            response.close()
            raise requests.exceptions.Timeout(f"request timeout exceeded before reading body of {response.url}")

        def expire():
            expired.set()
            _cut_off(response)

        timer = threading.Timer(remaining, expire)
        timer.daemon = True
        timer.start()

    try:
        for _ in response.iter_content(chunk_size=65536):
            pass
    except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError, OSError, ValueError) as e:
        if expired.is_set():
            raise requests.exceptions.Timeout(
                f"request timeout exceeded while reading body of {response.url}"
            ) from e
        raise
    finally:
        if timer is not None:
            timer.cancel()
        response.close()

    if expired.is_set():
        raise requests.exceptions.Timeout(f"request timeout exceeded while reading body of {response.url}")


def fire_request(
    session: requests.Session,
    record: Record,
    config: ReplayConfig,
    result_queue: queue.Queue,
    window_queue: Optional[queue.Queue] = None
) -> ResultRecord:
    """
    Replay one record and report the outcome.

    Always puts exactly one ResultRecord on `result_queue`. When
    `window_queue` is given, a 0/1 sample is put on it for every request
    that reached the network; construction failures only produce a
    sample when config.count_build_errors is set.

    Args:
        session: Shared HTTP session
        record: Record to replay
        config: Replay settings
        result_queue: Queue consumed by the result logger
        window_queue: Queue consumed by the window monitor, or None

    Returns:
        The ResultRecord that was queued
    """
    url = config.prefix + record.path
    if config.debug:
        print(f"[*] Querying {record.method} {url} {record.payload} {record.user_agent}",
              file=sys.stderr, flush=True)

    start_ts = int(time.time())
    started = time.monotonic_ns()

    try:
        prepared = build_request(session, record, config)
    except (requests.exceptions.RequestException, ValueError) as e:
        if config.debug:
            print(f"[ERROR] {e} while creating new request to {url}", file=sys.stderr, flush=True)
        result = ResultRecord(500, start_ts, 0, record.path, record.payload, str(e))
        if window_queue is not None and config.count_build_errors:
            window_queue.put(1)
        result_queue.put(result)
        return result

    timeout = config.timeout
    deadline = time.monotonic() + timeout if timeout is not None else None
    status_code = 500
    error = None

    try:
        response = session.send(prepared, timeout=timeout, stream=True)
        _drain(response, deadline)
        status_code = response.status_code
    except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError, OSError, ValueError) as e:
        error = e

    duration = time.monotonic_ns() - started

    if error is not None:
        if config.debug:
            print(f'[ERROR] "{error}" while querying "{url}"', file=sys.stderr, flush=True)
        result = ResultRecord(500, start_ts, duration, record.path, record.payload, str(error))
    else:
        result = ResultRecord(status_code, start_ts, duration, record.path, record.payload)

    if window_queue is not None:
        window_queue.put(1 if error is not None else 0)
    result_queue.put(result)
    return result
