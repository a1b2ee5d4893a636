"""
Business-hours parsing.

Pharmacies describe their opening hours as free text, e.g.
"Lunes a viernes 09:00 - 13:00 y 14:00 - 18:00". Each range is turned into
30-minute slot start times; the end boundary is never a slot.
"""
import logging
import re
from datetime import time
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

SLOT_MINUTES = 30

_RANGE_SEPARATORS = re.compile(r" y |,|;")
_TIME_TOKEN = re.compile(r"\d{1,2}:\d{2}")


def _token_to_minutes(token: str) -> Optional[int]:
    hours, minutes = (int(part) for part in token.split(":"))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def _range_slots(fragment: str) -> List[int]:
    tokens = _TIME_TOKEN.findall(fragment)
    if len(tokens) < 2:
        logger.warning("Cannot parse time range %r: fewer than two times", fragment)
        return []

    start = _token_to_minutes(tokens[0])
    end = _token_to_minutes(tokens[-1])
    if start is None or end is None or end <= start:
        logger.warning("Invalid time range %r", fragment)
        return []

    return list(range(start, end, SLOT_MINUTES))


def parse_business_hours(text: Optional[str]) -> List[time]:
    """Return the sorted, de-duplicated slot template described by ``text``."""
    if not text:
        return []

    minutes = set()
    for fragment in _RANGE_SEPARATORS.split(text):
        minutes.update(_range_slots(fragment.strip()))

    return [time(m // 60, m % 60) for m in sorted(minutes)]


def format_slot(value: time) -> str:
    return value.strftime("%H:%M")


def format_slots(values: Iterable[time]) -> List[str]:
    return [format_slot(v) for v in values]


def parse_slot(value: str) -> Optional[time]:
    """Strict "HH:MM" parser used for user-submitted times. None if invalid."""
    if not isinstance(value, str) or not re.fullmatch(r"\d{2}:\d{2}", value.strip()):
        return None
    minutes = _token_to_minutes(value.strip())
    if minutes is None:
        return None
    return time(minutes // 60, minutes % 60)
