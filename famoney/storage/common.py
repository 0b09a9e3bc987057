"""Common storage utilities shared between memory and postgres implementations.

This module holds the logic both backends must agree on so that "current
state" queries behave identically regardless of where rows live.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol, Sequence, TypeVar

from famoney.storage.errors import ConstraintViolation
from famoney.storage.models import Category, Page


# ============================================================================
# SOFT DELETE
# ============================================================================

class Tombstoned(Protocol):
    deleted_at: object


R = TypeVar("R", bound=Tombstoned)

# SQL fragment appended to every current-state query on a tombstoned table.
LIVE = "deleted_at IS NULL"


def is_live(record: Optional[Tombstoned]) -> bool:
    """Return True when the record exists and carries no deletion tombstone."""
    return record is not None and getattr(record, "deleted_at", None) is None


def live_only(records: Iterable[R]) -> List[R]:
    """Filter an iterable down to records that are not soft-deleted."""
    return [record for record in records if is_live(record)]


# ============================================================================
# DEFAULT CATEGORIES
# ============================================================================

# (name, color, icon) seeded once per store; ledger-independent and immutable.
DEFAULT_CATEGORIES: Sequence[tuple[str, str, str]] = (
    ("Food", "#f59e0b", "utensils"),
    ("Transport", "#2563eb", "bus"),
    ("Shopping", "#ec4899", "shopping-bag"),
    ("Housing", "#8b5cf6", "home"),
    ("Health", "#10b981", "heart-pulse"),
    ("Entertainment", "#f97316", "film"),
    ("Education", "#06b6d4", "book"),
    ("Other", "#808080", "ellipsis"),
)


def sort_categories(categories: Iterable[Category]) -> List[Category]:
    """Defaults first, then alphabetical by name."""
    return sorted(categories, key=lambda c: (not c.is_default, c.name))


def is_visible_to_ledger(category: Category, ledger_id: str) -> bool:
    return category.is_default or category.belongs_to(ledger_id)


# ============================================================================
# PAGINATION
# ============================================================================

def validate_page_request(page: int, size: int, *, max_size: int = 100) -> None:
    """Validate pagination parameters.

    Raises:
        ConstraintViolation: If page is negative or size is out of range
    """
    if page < 0:
        raise ConstraintViolation("page must be >= 0", {"field": "page"})
    if size < 1 or size > max_size:
        raise ConstraintViolation(
            f"size must be between 1 and {max_size}", {"field": "size"}
        )


def paginate(
    records: Sequence[R], page: int, size: int, *, max_size: int = 100
) -> Page[R]:
    validate_page_request(page, size, max_size=max_size)
    start = page * size
    return Page(items=list(records[start : start + size]), page=page, size=size, total=len(records))


__all__ = [
    "DEFAULT_CATEGORIES",
    "LIVE",
    "is_live",
    "is_visible_to_ledger",
    "live_only",
    "paginate",
    "sort_categories",
    "validate_page_request",
]
