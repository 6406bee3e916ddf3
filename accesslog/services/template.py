"""
Access-log format compiler.

A format string mixes literal text with ``{{.field}}`` placeholders, where
``field`` is one of the :class:`LogField` names::

    {{.remote_ip}} {{.method}} {{.uri}} {{.status}}

Formats are compiled once, at configuration time. A compiled
:class:`LogTemplate` is immutable and can be rendered by any number of
concurrent requests.
"""

import re
from typing import Iterable, TextIO, Tuple, Union

from accesslog.schemas.record import AccessLogRecord, LogField

Segment = Union[str, LogField]

_OPEN = "{{"
_CLOSE = "}}"
_FIELD_ACTION = re.compile(r"\s*\.([A-Za-z_][A-Za-z0-9_]*)\s*")


class LogFormatError(ValueError):
    """Raised when an access-log format string cannot be compiled."""

    def __init__(self, message: str, offset: int) -> None:
        super().__init__(f"{message} at offset {offset}")
        self.offset = offset


class LogTemplate:
    """Compiled access-log format."""

    __slots__ = ("_source", "_segments")

    def __init__(self, source: str, segments: Iterable[Segment]) -> None:
        self._source = source
        self._segments: Tuple[Segment, ...] = tuple(segments)

    @classmethod
    def compile(cls, source: str) -> "LogTemplate":
        """
        Parse ``source`` into literal and field segments.

        Raises:
            LogFormatError: on an unterminated ``{{``, an action that is
                not a ``.field`` reference, or an unknown field name.
        """
        segments: list[Segment] = []
        pos = 0
        while True:
            start = source.find(_OPEN, pos)
            if start == -1:
                if pos < len(source):
                    segments.append(source[pos:])
                break
            if start > pos:
                segments.append(source[pos:start])

            end = source.find(_CLOSE, start + len(_OPEN))
            if end == -1:
                raise LogFormatError("unterminated placeholder", start)

            action = source[start + len(_OPEN):end]
            match = _FIELD_ACTION.fullmatch(action)
            if match is None:
                raise LogFormatError(f"unsupported action {action.strip()!r}", start)

            name = match.group(1)
            try:
                segments.append(LogField(name))
            except ValueError:
                raise LogFormatError(f"unknown field {name!r}", start) from None

            pos = end + len(_CLOSE)

        return cls(source, segments)

    @property
    def source(self) -> str:
        return self._source

    @property
    def fields(self) -> Tuple[LogField, ...]:
        return tuple(s for s in self._segments if isinstance(s, LogField))

    def render(self, record: AccessLogRecord, out: TextIO) -> None:
        """Write the rendered line for ``record`` into ``out``."""
        for segment in self._segments:
            if isinstance(segment, LogField):
                out.write(str(record.value_of(segment)))
            else:
                out.write(segment)

    def __repr__(self) -> str:
        return f"LogTemplate({self._source!r})"
