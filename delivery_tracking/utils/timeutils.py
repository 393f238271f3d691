"""Horodatages ISO 8601 UTC / ISO 8601 UTC timestamps.

Les horodatages sont stockes en texte UTC normalise, ce qui garde l'ordre lexicographique.
Timestamps are stored as normalised UTC text, which keeps lexicographic order.
"""

from datetime import datetime, timezone


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime) -> datetime:
    """Naif = UTC / Naive means UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    return to_utc(value).isoformat(timespec="seconds")


def now_iso() -> str:
    return to_iso(now_utc())


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return to_utc(datetime.fromisoformat(value))
