import pytest

from src.records import ResultRecord, escape_field, unescape_field


def test_to_line_success():
    """Test a successful result has five columns."""
    result = ResultRecord(200, 1383917958, 5000000, '/a', '')

    assert result.to_line() == '200\t1383917958\t5000000\t/a\t\n'
    assert result.failed is False


def test_to_line_failure_has_error_column():
    """Test a failed result carries the error text as a sixth column."""
    result = ResultRecord(500, 1383917958, 0, '/a', 'x=1', 'connection refused')

    assert result.to_line() == '500\t1383917958\t0\t/a\tx=1\tconnection refused\n'
    assert result.failed is True


def test_to_line_is_deterministic():
    """Test identical records serialize identically."""
    a = ResultRecord(404, 1, 2, '/p', 'q', None)
    b = ResultRecord(404, 1, 2, '/p', 'q', None)

    assert a.to_line() == b.to_line()


def test_from_line_recovers_fields():
    """Test parsing a serialized line gives back the same record."""
    results = [
        ResultRecord(200, 1383917958, 5000000, '/a', ''),
        ResultRecord(500, 1383917958, 123, '/b?x=1', 'a=1&b=2', 'read timed out'),
        ResultRecord(302, 0, 9223372036854775807, '/tab\there', 'multi\nline\\body', ''),
    ]

    for result in results:
        assert ResultRecord.from_line(result.to_line()) == result


def test_from_line_wrong_column_count():
    """Test lines with the wrong number of columns are rejected."""
    with pytest.raises(ValueError):
        ResultRecord.from_line('200\t1\t2\t/a\n')


def test_escape_keeps_single_line():
    """Test control characters never reach the output unescaped."""
    escaped = escape_field('a\tb\nc\rd\\e')

    assert '\t' not in escaped
    assert '\n' not in escaped
    assert unescape_field(escaped) == 'a\tb\nc\rd\\e'


def test_unescape_unknown_sequence():
    """Test unknown escape sequences are kept verbatim."""
    assert unescape_field('C:\\x') == 'C:\\x'
