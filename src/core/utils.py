"""
Small shared utilities.
"""
from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import date, datetime
from typing import Generator


@contextmanager
def timer() -> Generator[dict, None, None]:
    """Context manager that records elapsed wall-clock milliseconds."""
    result: dict = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        result["elapsed_ms"] = int((time.perf_counter() - start) * 1000)


def to_date(value: date | datetime | str) -> date:
    """Coerce an ISO string / datetime / date to a ``date``.

    Raises ``ValueError`` for unparseable strings.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip()[:10])


def iso_day(value: date | datetime | str | None) -> str:
    """Date-only ISO string, or ``""`` when *value* is empty."""
    if value is None or value == "":
        return ""
    return to_date(value).isoformat()
