"""
Restock timers for catalog items.

An unavailable item may carry `restock_at`; once that instant has passed,
`tick` flips it back to available. Marking an item available by hand always
drops its timer.
"""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

from pydantic import TypeAdapter, ValidationError

from schemas import CatalogItem, Timestamp

ARRIVING_NOW = "Arriving now"

_timestamp = TypeAdapter(Timestamp)


class InvalidRestockTarget(ValueError):
    pass


def parse_restock_target(value: Union[str, int, float, datetime, None],
                         now: Optional[datetime] = None) -> datetime:
    """Validate a user-supplied restock time.

    Accepts an ISO-8601 string, epoch milliseconds or a datetime. Naive
    values are read as UTC. A target that is not after `now` is rejected.
    """
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise InvalidRestockTarget("Restock time is required")
    try:
        target = _timestamp.validate_python(value)
    except ValidationError:
        raise InvalidRestockTarget(f"Unparseable restock time: {value!r}")
    if now is not None and target <= now:
        raise InvalidRestockTarget("Restock time must be in the future")
    return target


def mark_unavailable(item: CatalogItem, restock_at: Optional[datetime] = None) -> CatalogItem:
    return item.model_copy(update={"available": False, "restock_at": restock_at})


def restock(item: CatalogItem) -> CatalogItem:
    return item.model_copy(update={"available": True, "restock_at": None})


def is_due(item: CatalogItem, now: datetime) -> bool:
    return not item.available and item.restock_at is not None and item.restock_at <= now


def tick(items: Iterable[CatalogItem], now: datetime) -> List[CatalogItem]:
    return [restock(item) if is_due(item, now) else item for item in items]


def _unit(count: int, singular: str, plural: str) -> str:
    return f"{count} {singular if count == 1 else plural}"


def format_countdown(restock_at: datetime, now: datetime) -> str:
    if restock_at.tzinfo is None:
        restock_at = restock_at.replace(tzinfo=timezone.utc)
    remaining = restock_at - now
    if remaining.total_seconds() <= 0:
        return ARRIVING_NOW

    total_minutes = int(remaining.total_seconds() // 60)
    days, rest = divmod(total_minutes, 24 * 60)
    hours, mins = divmod(rest, 60)

    parts = []
    if days > 0:
        parts.append(_unit(days, "Day", "Days"))
    if days > 0 or hours > 0:
        parts.append(_unit(hours, "Hour", "Hours"))
    parts.append(_unit(mins, "Min", "Mins"))
    return ", ".join(parts)
