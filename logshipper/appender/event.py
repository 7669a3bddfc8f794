"""
Log events and their payload shapes.

A LogEvent is what the appender buffers and publishes. Its payload is
classified exactly once, when the event is accepted, into one of three
shapes:

- RenderedText: the event carried a message string; the layout rendered it
- SingleValue: the event carried exactly one non-string value
- ValueList: the event carried several values; the interceptor reduces them
"""

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union


@dataclass(frozen=True)
class RenderedText:
    """Payload produced by a layout function."""
    text: str

    @property
    def value(self) -> str:
        return self.text


@dataclass(frozen=True)
class SingleValue:
    """A lone value, unwrapped from a one-element sequence."""
    value: Any


@dataclass(frozen=True)
class ValueList:
    """Several values, left as-is for the interceptor."""
    values: Tuple[Any, ...]

    @property
    def value(self) -> Tuple[Any, ...]:
        return self.values


Payload = Union[RenderedText, SingleValue, ValueList]


@dataclass
class LogEvent:
    """
    A single log event handed over by the host logging framework.

    Attributes:
        start_time: When the event was created (timezone aware)
        data: Raw payload, a message string, a sequence of values or any object
        level: Severity level name (e.g. "INFO")
        category: Source category, the name of the emitting logger
        record: Originating LogRecord, if the event came from stdlib logging
        payload: Normalized payload, set once when the event is accepted
    """
    start_time: datetime
    data: Any
    level: str = "INFO"
    category: str = "default"
    record: Optional[logging.LogRecord] = field(default=None, repr=False, compare=False)
    payload: Optional[Payload] = None

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogEvent":
        """Build an event from a stdlib LogRecord."""
        if isinstance(record.args, tuple):
            args = record.args
        elif record.args:
            args = (record.args,)
        else:
            args = ()

        return cls(
            start_time=datetime.fromtimestamp(record.created, tz=timezone.utc),
            data=(record.msg,) + tuple(args),
            level=record.levelname,
            category=record.name,
            record=record,
        )

    def to_record(self) -> logging.LogRecord:
        """
        Get a LogRecord view of this event for Formatter-based layouts.

        Returns the originating record when there is one; otherwise a record
        is synthesized from the event's fields. A synthesized record carries
        the already rendered message and no args.
        """
        if self.record is not None:
            return self.record

        if _is_value_sequence(self.data) and self.data:
            msg = format_values(self.data)
        else:
            msg = self.data

        created = self.start_time.timestamp()
        levelno = logging.getLevelName(self.level)
        record = logging.makeLogRecord({
            "name": self.category,
            "msg": msg,
            "args": None,
            "levelname": self.level,
            "levelno": levelno if isinstance(levelno, int) else logging.NOTSET,
            "created": created,
            "msecs": (created - int(created)) * 1000,
        })
        self.record = record
        return record

    def message(self) -> str:
        """
        Render the event's message text.

        Records from stdlib logging render as msg % args. Events built from a
        value sequence render through format_values().
        """
        return self.to_record().getMessage()


def _is_value_sequence(data: Any) -> bool:
    return isinstance(data, Sequence) and not isinstance(data, (str, bytes, bytearray))


_PLACEHOLDER = re.compile(r"%[sdifjoOc%]")


def _number(value: Any, convert: Callable[[Any], Any]) -> str:
    if isinstance(value, bool):
        value = int(value)
    try:
        number = convert(value)
    except (TypeError, ValueError, OverflowError):
        return "NaN"
    if isinstance(number, float) and number.is_integer():
        return str(int(number))
    return str(number)


def _substitute(token: str, value: Any) -> str:
    kind = token[1]
    if kind == "s":
        return str(value)
    if kind == "d":
        return _number(value, lambda v: v if isinstance(v, (int, float)) else float(v))
    if kind == "i":
        return _number(value, lambda v: int(float(v)))
    if kind == "f":
        return _number(value, float)
    if kind == "j":
        return json.dumps(value, default=str)
    if kind == "c":
        return ""
    return repr(value)


def format_values(values: Sequence) -> str:
    """
    Render a value sequence as one line of text.

    A leading string is a template: %s, %d, %i, %f, %j, %o, %O and %c each
    consume the next value and %% is a literal percent sign. Any other % is
    kept as written. Values left over are appended, separated by spaces.

    Example:
        format_values(["%s logged in", "alice"])  -> "alice logged in"
        format_values(["user", 42])               -> "user 42"
        format_values(["50% done", 3])            -> "50% done 3"
    """
    if not values:
        return ""

    first, rest = values[0], list(values[1:])
    if not isinstance(first, str):
        return " ".join(str(value) for value in values)
    if not rest:
        return first

    position = 0

    def replace(match: "re.Match[str]") -> str:
        nonlocal position
        token = match.group()
        if token == "%%":
            return "%"
        if position >= len(rest):
            return token
        value = rest[position]
        position += 1
        return _substitute(token, value)

    text = _PLACEHOLDER.sub(replace, first)
    return " ".join([text] + [str(value) for value in rest[position:]])


def classify_payload(event: LogEvent, layout: Callable[[LogEvent], str]) -> Payload:
    """
    Decide the payload shape of an event.

    Args:
        event: Event to classify
        layout: Layout used when the event carries a message string

    Returns:
        The payload variant for the event
    """
    data = event.data

    if isinstance(data, str):
        return RenderedText(layout(event))

    if not _is_value_sequence(data):
        return SingleValue(data)

    if data and isinstance(data[0], str):
        return RenderedText(layout(event))

    if len(data) == 1:
        return SingleValue(data[0])

    return ValueList(tuple(data))


def normalize(event: LogEvent, layout: Callable[[LogEvent], str]) -> LogEvent:
    """Set the event's payload in place unless it already has one."""
    if event.payload is None:
        event.payload = classify_payload(event, layout)
    return event


def default_log_event_interceptor(
    event: LogEvent,
    additional_info: Mapping[str, Any],
) -> Dict[str, Any]:
    """
    Build the outbound message for an event.

    Fields from additional_info are added only where the event itself does
    not already define the key.
    """
    message: Dict[str, Any] = {
        "timestamp": event.start_time.isoformat(),
        "data": event.payload.value if event.payload is not None else event.data,
        "level": event.level,
        "category": event.category,
    }
    for key, value in additional_info.items():
        message.setdefault(key, value)
    return message
