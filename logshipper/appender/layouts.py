"""
Layout functions: LogEvent -> rendered string.

Available layout types:
- messagePassThrough: the formatted message only (default)
- basic: "[timestamp] [LEVEL] category - message"
- pattern: a logging.Formatter format string ({"pattern": "%(levelname)s %(message)s"})
- json: the message plus level, category and timestamp as a JSON object
"""

import json
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from logshipper.appender.event import LogEvent

Layout = Callable[[LogEvent], str]


def message_pass_through_layout(event: LogEvent) -> str:
    """Render only the message."""
    return event.message()


def basic_layout(event: LogEvent) -> str:
    """Render timestamp, level and category in front of the message."""
    return "[{}] [{}] {} - {}".format(
        event.start_time.isoformat(),
        event.level,
        event.category,
        event.message(),
    )


def json_layout(event: LogEvent) -> str:
    """Render the event as a compact JSON object."""
    return json.dumps(
        {
            "timestamp": event.start_time.isoformat(),
            "level": event.level,
            "category": event.category,
            "message": event.message(),
        },
        default=str,
    )


def pattern_layout(pattern: str, datefmt: Optional[str] = None) -> Layout:
    """
    Create a layout from a logging.Formatter format string.

    Args:
        pattern: Format string, e.g. "%(asctime)s %(levelname)s %(message)s"
        datefmt: Optional strftime format for %(asctime)s
    """
    formatter = logging.Formatter(fmt=pattern, datefmt=datefmt)

    def layout(event: LogEvent) -> str:
        return formatter.format(event.to_record())

    return layout


_SIMPLE_LAYOUTS: Dict[str, Layout] = {
    "messagePassThrough": message_pass_through_layout,
    "basic": basic_layout,
    "json": json_layout,
}

LAYOUT_TYPES = tuple(_SIMPLE_LAYOUTS) + ("pattern",)


def layout_from_config(config: Mapping[str, Any]) -> Layout:
    """
    Build a layout from its configuration mapping.

    Args:
        config: Mapping with a "type" key, plus "pattern"/"datefmt" for pattern layouts

    Returns:
        Layout function

    Raises:
        ValueError: If the type is unknown or a pattern layout has no pattern
    """
    layout_type = config.get("type", "messagePassThrough")

    if layout_type == "pattern":
        pattern = config.get("pattern")
        if not pattern:
            raise ValueError("pattern layout requires a 'pattern'")
        return pattern_layout(pattern, config.get("datefmt"))

    try:
        return _SIMPLE_LAYOUTS[layout_type]
    except KeyError:
        raise ValueError(
            f"Unknown layout type {layout_type!r}, expected one of {LAYOUT_TYPES}"
        ) from None
