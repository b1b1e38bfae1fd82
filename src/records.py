from dataclasses import dataclass
from datetime import datetime
from typing import Optional


_ESCAPES = {'\\': '\\\\', '\t': '\\t', '\n': '\\n', '\r': '\\r'}
_UNESCAPES = {'\\': '\\', 't': '\t', 'n': '\n', 'r': '\r'}


@dataclass(frozen=True)
class Record:
    """One historical request read from an access log."""
    method: str
    path: str
    payload: str
    user_agent: str
    timestamp: datetime


@dataclass(frozen=True)
class ResultRecord:
    """Outcome of replaying one Record."""
    status_code: int
    start_unix_seconds: int
    duration_nanos: int
    path: str
    payload: str
    error_text: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error_text is not None

    def to_line(self) -> str:
        """
        Serialize as one tab-separated line (with trailing newline).

        Columns: status, start, duration, path, payload[, error].
        Tabs, newlines and backslashes inside text fields are escaped
        so every record stays on a single line.
        """
        fields = [
            str(self.status_code),
            str(self.start_unix_seconds),
            str(self.duration_nanos),
            escape_field(self.path),
            escape_field(self.payload),
        ]
        if self.error_text is not None:
            fields.append(escape_field(self.error_text))
        return '\t'.join(fields) + '\n'

    @classmethod
    def from_line(cls, line: str) -> 'ResultRecord':
        """
        Parse a line produced by to_line().

        Raises:
            ValueError: if the line does not have 5 or 6 columns
        """
        fields = line.rstrip('\r\n').split('\t')
        if len(fields) not in (5, 6):
            raise ValueError(f"expected 5 or 6 tab-separated fields, got {len(fields)}")

        return cls(
            status_code=int(fields[0]),
            start_unix_seconds=int(fields[1]),
            duration_nanos=int(fields[2]),
            path=unescape_field(fields[3]),
            payload=unescape_field(fields[4]),
            error_text=unescape_field(fields[5]) if len(fields) == 6 else None,
        )


def escape_field(value: str) -> str:
    return ''.join(_ESCAPES.get(ch, ch) for ch in value)


def unescape_field(value: str) -> str:
    out = []
    chars = iter(value)
    for ch in chars:
        if ch == '\\':
            nxt = next(chars, '')
            # Unknown escapes are kept verbatim
            out.append(_UNESCAPES.get(nxt, '\\' + nxt))
        else:
            out.append(ch)
    return ''.join(out)
