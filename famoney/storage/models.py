from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class User:
    id: str
    email: str
    password_hash: str
    name: str
    profile_image: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


@dataclass
class Ledger:
    id: str
    name: str
    created_by: str
    description: Optional[str] = None
    currency: str = "KRW"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


@dataclass
class Membership:
    """(user, ledger, role) triple; holds ids only, never object references."""

    id: str
    user_id: str
    ledger_id: str
    role: str
    joined_at: datetime = field(default_factory=utcnow)
    invited_by: Optional[str] = None


@dataclass
class RefreshToken:
    id: str
    user_id: str
    token: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)
    revoked_at: Optional[datetime] = None

    @classmethod
    def new(cls, user_id: str, token: str, ttl_seconds: int) -> "RefreshToken":
        now = utcnow()
        return cls(
            id=new_id(),
            user_id=user_id,
            token=token,
            expires_at=now + timedelta(seconds=ttl_seconds),
            created_at=now,
        )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def is_revoked(self) -> bool:
        return self.revoked_at is not None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return not self.is_expired(now) and not self.is_revoked()


@dataclass
class Category:
    id: str
    name: str
    ledger_id: Optional[str] = None
    color: str = "#808080"
    icon: Optional[str] = None
    is_default: bool = False
    created_at: datetime = field(default_factory=utcnow)

    def belongs_to(self, ledger_id: str) -> bool:
        return self.ledger_id is not None and self.ledger_id == ledger_id


@dataclass
class Expense:
    id: str
    ledger_id: str
    amount: Decimal
    description: str
    expense_date: date
    created_by: str
    category_id: Optional[str] = None
    payment_method: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    def is_created_by(self, user_id: str) -> bool:
        return self.created_by == user_id


@dataclass
class Page(Generic[T]):
    items: List[T]
    page: int
    size: int
    total: int

    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return math.ceil(self.total / self.size)

    @property
    def is_first(self) -> bool:
        return self.page == 0

    @property
    def is_last(self) -> bool:
        return self.page >= max(self.total_pages - 1, 0)
