import gzip
import io
from datetime import datetime, timedelta, timezone

import pytest

from src.parsers import (
    DUMMY_LINES,
    LogParseError,
    compile_nginx_format,
    iter_records,
    open_input,
    parse_haproxy_line,
    parse_nginx_line,
    parse_solr_line,
)


def test_parse_nginx_line_default_format():
    """Test parsing the built-in nginx sample line."""
    record = parse_nginx_line(DUMMY_LINES['nginx'])

    assert record.method == 'GET'
    assert record.path == '/t/100x100/foo/bar.jpeg'
    assert record.payload == ''
    assert record.user_agent == ''
    assert record.timestamp == datetime(2013, 11, 8, 13, 39, 18, tzinfo=timezone.utc)


def test_parse_nginx_line_custom_format():
    """Test user agent and body come from a custom format."""
    fmt = '$remote_addr - [$time_local] "$request" $status "$http_user_agent" "$request_body"'
    line = '10.0.0.1 - [01/Jul/1995:00:00:01 -0400] "POST /api/items HTTP/1.1" 201 "curl/7.0" "a=1&b=2"'

    record = parse_nginx_line(line, fmt)

    assert record.method == 'POST'
    assert record.path == '/api/items'
    assert record.user_agent == 'curl/7.0'
    assert record.payload == 'a=1&b=2'
    assert record.timestamp.utcoffset() == timedelta(hours=-4)


def test_parse_nginx_line_dash_means_empty():
    """Test '-' user agent and body are treated as empty."""
    fmt = '[$time_local] "$request" "$http_user_agent" "$request_body"'
    line = '[01/Jul/1995:00:00:01 +0000] "GET / HTTP/1.0" "-" "-"'

    record = parse_nginx_line(line, fmt)

    assert record.user_agent == ''
    assert record.payload == ''


def test_parse_nginx_line_invalid():
    """Test a line that does not match the format."""
    with pytest.raises(LogParseError):
        parse_nginx_line('invalid log line')


def test_parse_nginx_line_bad_request():
    """Test a request field without a path."""
    fmt = '[$time_local] "$request"'
    with pytest.raises(LogParseError):
        parse_nginx_line('[01/Jul/1995:00:00:01 +0000] "-"', fmt)


def test_compile_nginx_format_requires_variables():
    """Test a format without variables is rejected."""
    with pytest.raises(ValueError):
        compile_nginx_format('no variables here')


def test_parse_haproxy_line():
    """Test parsing the built-in haproxy sample line."""
    record = parse_haproxy_line(DUMMY_LINES['haproxy'])

    assert record.method == 'GET'
    assert record.path == '/'
    assert record.timestamp == datetime(2013, 9, 27, 0, 15, 43, 494000, tzinfo=timezone.utc)


def test_parse_haproxy_line_invalid():
    """Test a non-haproxy line."""
    with pytest.raises(LogParseError):
        parse_haproxy_line(DUMMY_LINES['nginx'])


def test_parse_solr_line():
    """Test parsing a solr request log line."""
    record = parse_solr_line(DUMMY_LINES['solr'])

    assert record.method == 'GET'
    assert record.path == '/solr/select?q=*:*&rows=10'
    assert record.timestamp == datetime(2017, 8, 23, 10, 11, 12, 345000, tzinfo=timezone.utc)


def test_iter_records_skips_blank_lines():
    """Test blank lines are ignored and records come out in order."""
    stream = io.StringIO(
        '[01/Jul/1995:00:00:01 +0000] "GET /a HTTP/1.0"\n'
        '\n'
        '[01/Jul/1995:00:00:02 +0000] "GET /b HTTP/1.0"\n'
    )

    records = list(iter_records(stream, 'nginx', '[$time_local] "$request"'))

    assert [r.path for r in records] == ['/a', '/b']


def test_iter_records_is_lazy():
    """Test records before a bad line are yielded before the error."""
    stream = io.StringIO(
        '[01/Jul/1995:00:00:01 +0000] "GET /a HTTP/1.0"\n'
        'garbage\n'
    )
    records = iter_records(stream, 'nginx', '[$time_local] "$request"')

    assert next(records).path == '/a'
    with pytest.raises(LogParseError) as excinfo:
        next(records)
    assert excinfo.value.line_number == 2


def test_iter_records_unknown_type():
    """Test an unknown file type."""
    with pytest.raises(ValueError):
        list(iter_records(io.StringIO(''), 'apache'))


def test_open_input_dummy():
    """Test the dummy input yields exactly one record."""
    records = list(iter_records(open_input('dummy', 'haproxy'), 'haproxy'))

    assert len(records) == 1


def test_open_input_gzip(tmp_path):
    """Test gzip files are decompressed transparently."""
    path = tmp_path / 'access.log.gz'
    with gzip.open(path, 'wt') as f:
        f.write(DUMMY_LINES['nginx'] + '\n')

    with open_input(str(path)) as stream:
        records = list(iter_records(stream))

    assert records[0].path == '/t/100x100/foo/bar.jpeg'


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
