import gzip
import io
import re
import sys
from datetime import datetime, timezone
from functools import lru_cache
from typing import Iterator, Optional, TextIO

from src.records import Record


DEFAULT_NGINX_FORMAT = (
    '$remote_addr [$time_local] "$request" $status $request_length '
    '$body_bytes_sent $request_time "$t_size" $read_time $gen_time'
)

FILE_TYPES = ('nginx', 'haproxy', 'solr')

DUMMY_LINES = {
    'nginx': '89.234.89.123 [08/Nov/2013:13:39:18 +0000] "GET /t/100x100/foo/bar.jpeg HTTP/1.1" 200 1027 2430 0.014 "100x100" 10 1',
    'haproxy': '<142>Sep 27 00:15:57 haproxy[28513]: 67.188.214.167:64531 [27/Sep/2013:00:15:43.494] frontend~ test/10.127.57.177-10000 449/0/0/13531/13980 200 13824 - - ---- 6/6/0/1/0 0/0 "GET / HTTP/1.1"',
    'solr': '2017-08-23 10:11:12.345 INFO  (qtp1348949648-19) [   x:products] o.a.s.c.S.Request [products]  webapp=/solr path=/select params={q=*:*&rows=10} hits=42 status=0 QTime=3',
}

_VARIABLE = re.compile(r'\$(\w+)')

_HAPROXY = re.compile(
    r'haproxy\[\d+\]: \S+ \[(?P<accept_date>[^\]]+)\] .*"(?P<request>[^"]*)"\s*$'
)

_SOLR = re.compile(
    r'^(?P<date>\d{4}-\d{2}-\d{2}[ T]\d{2}:\d{2}:\d{2}[.,]\d{3})'
    r'.*?webapp=(?P<webapp>\S*) path=(?P<path>\S+) params=\{(?P<params>.*?)\}(?:\s|$)'
)


class LogParseError(ValueError):
    """Raised when an input line cannot be decoded into a Record."""

    def __init__(self, message: str, line_number: int = 0):
        if line_number:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


@lru_cache(maxsize=32)
def compile_nginx_format(log_format: str) -> re.Pattern:
    """
    Build a regular expression from an nginx log_format string.

    Every $variable becomes a named group that matches up to the literal
    character following it in the format (or to the end of the line).

    Args:
        log_format: nginx log_format definition, e.g. '$remote_addr [$time_local]'

    Returns:
        Compiled pattern with one group per variable
    """
    parts = []
    pos = 0
    matches = list(_VARIABLE.finditer(log_format))
    if not matches:
        raise ValueError(f"log format has no $variables: {log_format!r}")

    for i, match in enumerate(matches):
        parts.append(re.escape(log_format[pos:match.start()]))
        pos = match.end()

        end = matches[i + 1].start() if i + 1 < len(matches) else len(log_format)
        literal = log_format[pos:end]
        if literal:
            parts.append(f'(?P<{match.group(1)}>[^{re.escape(literal[0])}]*)')
        else:
            parts.append(f'(?P<{match.group(1)}>.*)')

    parts.append(re.escape(log_format[pos:]))
    return re.compile('^' + ''.join(parts) + '$')


def _split_request(request: str):
    pieces = request.split(' ')
    if len(pieces) < 2 or not pieces[0] or not pieces[1]:
        raise LogParseError(f"cannot split request {request!r} into method and path")
    return pieces[0], pieces[1]


def _dash(value: Optional[str]) -> str:
    if value is None or value == '-':
        return ''
    return value


def parse_nginx_line(line: str, log_format: str = DEFAULT_NGINX_FORMAT) -> Record:
    """
    Parse an nginx access log line written with the given log_format.

    The format must contain $time_local and $request. $http_user_agent and
    $request_body are used when present.
    """
    match = compile_nginx_format(log_format).match(line)
    if not match:
        raise LogParseError(f"line does not match nginx format: {line!r}")

    fields = match.groupdict()
    if 'time_local' not in fields or 'request' not in fields:
        raise LogParseError("nginx format must contain $time_local and $request")

    try:
        timestamp = datetime.strptime(fields['time_local'], '%d/%b/%Y:%H:%M:%S %z')
    except ValueError as e:
        raise LogParseError(f"bad $time_local {fields['time_local']!r}: {e}")

    method, path = _split_request(fields['request'])

    return Record(
        method=method,
        path=path,
        payload=_dash(fields.get('request_body')),
        user_agent=_dash(fields.get('http_user_agent')),
        timestamp=timestamp,
    )


def parse_haproxy_line(line: str) -> Record:
    """Parse a haproxy HTTP log line (syslog prefix optional)."""
    match = _HAPROXY.search(line)
    if not match:
        raise LogParseError(f"line does not look like a haproxy HTTP log: {line!r}")

    try:
        timestamp = datetime.strptime(match.group('accept_date'), '%d/%b/%Y:%H:%M:%S.%f')
    except ValueError as e:
        raise LogParseError(f"bad accept date {match.group('accept_date')!r}: {e}")

    method, path = _split_request(match.group('request'))
    return Record(method, path, '', '', timestamp.replace(tzinfo=timezone.utc))


def parse_solr_line(line: str) -> Record:
    """Parse a solr request log line into a GET against webapp + path."""
    match = _SOLR.search(line)
    if not match:
        raise LogParseError(f"line does not look like a solr request log: {line!r}")

    date = match.group('date').replace(',', '.').replace('T', ' ')
    timestamp = datetime.strptime(date, '%Y-%m-%d %H:%M:%S.%f').replace(tzinfo=timezone.utc)

    path = match.group('webapp') + match.group('path')
    if match.group('params'):
        path += '?' + match.group('params')

    return Record('GET', path, '', '', timestamp)


def iter_records(
    stream: TextIO,
    file_type: str = 'nginx',
    log_format: str = DEFAULT_NGINX_FORMAT
) -> Iterator[Record]:
    """
    Lazily decode a log stream into Records.

    Blank lines are skipped. Exhaustion of the stream ends the iteration;
    a line that cannot be decoded raises LogParseError.

    Args:
        stream: Text stream of log lines
        file_type: One of 'nginx', 'haproxy', 'solr'
        log_format: nginx log_format (ignored for other types)

    Yields:
        Record per non-blank line
    """
    if file_type == 'nginx':
        compile_nginx_format(log_format)
        parse = lambda line: parse_nginx_line(line, log_format)
    elif file_type == 'haproxy':
        parse = parse_haproxy_line
    elif file_type == 'solr':
        parse = parse_solr_line
    else:
        raise ValueError(f"file-type can be one of {', '.join(FILE_TYPES)}, not {file_type!r}")

    for line_number, line in enumerate(stream, 1):
        line = line.rstrip('\r\n')
        if not line.strip():
            continue
        try:
            yield parse(line)
        except LogParseError as e:
            raise LogParseError(str(e), line_number) from e


def open_input(name: str, file_type: str = 'nginx') -> TextIO:
    """
    Open the replay input.

    '-' reads stdin, 'dummy' serves a single built-in sample line for the
    file type, and names ending in 'gz' are decompressed on the fly.
    """
    if name == 'dummy':
        return io.StringIO(DUMMY_LINES.get(file_type, DUMMY_LINES['haproxy']) + '\n')
    if name == '-':
        return sys.stdin
    if name.endswith('gz'):
        return gzip.open(name, 'rt', encoding='utf-8', errors='replace')
    return open(name, 'r', encoding='utf-8', errors='replace')
