"""Parsing of the "now" value accepted by generation runs."""
from datetime import date, datetime
from typing import Union

NowType = Union[datetime, date, str]


def parse_now(now: NowType) -> Union[datetime, date]:
    """Parse an ISO string; a string without a time part is a calendar date."""
    if not isinstance(now, str):
        return now
    text = now.strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return datetime.fromisoformat(text.replace("Z", "+00:00"))
