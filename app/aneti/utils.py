from __future__ import annotations

from datetime import date, datetime
from typing import Any

from flask import request


def request_payload() -> dict[str, Any]:
    """JSON body if present, otherwise form fields."""
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def clean_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raw = str(value).strip().lower()
    if raw in ("1", "true", "yes", "on", "sim"):
        return True
    if raw in ("0", "false", "no", "off", "nao", "não", ""):
        return False
    return default


def parse_int(value: Any) -> int | None:
    """Parse an integer field; returns None for blank or malformed input."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def first_of_month(d: date) -> date:
    return d.replace(day=1)


def previous_month_bounds(d: date) -> tuple[date, date]:
    """[start, end) of the calendar month before the one containing d."""
    end = first_of_month(d)
    if end.month == 1:
        start = end.replace(year=end.year - 1, month=12)
    else:
        start = end.replace(month=end.month - 1)
    return start, end


def next_month_start(d: date) -> date:
    start = first_of_month(d)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)
