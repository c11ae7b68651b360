"""Shared helpers for storage backends."""

from __future__ import annotations

import json
from datetime import date, datetime, timezone


def dt_to_str(dt: datetime) -> str:
    return dt.isoformat()


def str_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def date_to_str(d: date) -> str:
    return d.isoformat()


def str_to_date(s: str) -> date:
    return date.fromisoformat(s)


def encode_embedding(vec: list[float]) -> str:
    return json.dumps([float(x) for x in vec])


def decode_embedding(raw: str) -> list[float]:
    try:
        values = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return [float(x) for x in values] if isinstance(values, list) else []
