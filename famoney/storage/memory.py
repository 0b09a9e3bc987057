from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from famoney.logging import get_logger
from famoney.storage.common import (
    DEFAULT_CATEGORIES,
    is_live,
    live_only,
    paginate,
    sort_categories,
    validate_page_request,
)
from famoney.storage.errors import ConstraintViolation
from famoney.storage.models import (
    Category,
    Expense,
    Ledger,
    Membership,
    Page,
    RefreshToken,
    User,
    new_id,
    utcnow,
)

_UNSET = object()


class MemoryStore:
    """In-memory backing store used by tests and local development.

    Records handed out are copies; every mutation goes through a store method
    so the lock covers each check-and-set.
    """

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        self.ledgers: Dict[str, Ledger] = {}
        self.memberships: Dict[str, Membership] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        self.categories: Dict[str, Category] = {}
        self.expenses: Dict[str, Expense] = {}
        # RLock so helpers can be called with the lock already held
        self._data_lock = threading.RLock()
        self.default_categories()

    def default_categories(self) -> None:
        with self._data_lock:
            existing = {c.name for c in self.categories.values() if c.is_default}
            for name, color, icon in DEFAULT_CATEGORIES:
                if name in existing:
                    continue
                category = Category(
                    id=new_id(), name=name, color=color, icon=icon, is_default=True
                )
                self.categories[category.id] = category

    # users
    def create_user(
        self,
        email: str,
        password_hash: str,
        name: str,
        *,
        profile_image: Optional[str] = None,
    ) -> User:
        normalized = email.strip().lower()
        with self._data_lock:
            if self._live_user_by_email(normalized):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=new_id(),
                email=normalized,
                password_hash=password_hash,
                name=name,
                profile_image=profile_image,
            )
            self.users[user.id] = user
            return replace(user)

    def _live_user_by_email(self, normalized: str) -> Optional[User]:
        return next(
            (
                u
                for u in self.users.values()
                if is_live(u) and u.email.lower() == normalized
            ),
            None,
        )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if is_live(user) else None

    def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        with self._data_lock:
            return {
                uid: replace(self.users[uid])
                for uid in set(user_ids)
                if is_live(self.users.get(uid))
            }

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = self._live_user_by_email(email.strip().lower())
            return replace(user) if user else None

    def update_user(
        self, user_id: str, *, name: Optional[str] = None, profile_image=_UNSET
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not is_live(user):
                return None
            if name is not None:
                user.name = name
            if profile_image is not _UNSET:
                user.profile_image = profile_image
            user.updated_at = utcnow()
            return replace(user)

    def set_password_hash(self, user_id: str, password_hash: str) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not is_live(user):
                return False
            user.password_hash = password_hash
            user.updated_at = utcnow()
            return True

    def soft_delete_user(self, user_id: str, now: Optional[datetime] = None) -> bool:
        with self._data_lock:
            user = self.users.get(user_id)
            if not is_live(user):
                return False
            user.deleted_at = now or utcnow()
            return True

    # ledgers
    def create_ledger(
        self,
        name: str,
        created_by: str,
        *,
        description: Optional[str] = None,
        currency: str = "KRW",
    ) -> Tuple[Ledger, Membership]:
        """Create the ledger and its OWNER membership under one lock hold."""
        with self._data_lock:
            if not is_live(self.users.get(created_by)):
                raise ConstraintViolation("user does not exist", {"user_id": created_by})
            ledger = Ledger(
                id=new_id(),
                name=name,
                created_by=created_by,
                description=description,
                currency=currency,
            )
            owner = Membership(
                id=new_id(),
                user_id=created_by,
                ledger_id=ledger.id,
                role="OWNER",
                joined_at=ledger.created_at,
            )
            self.ledgers[ledger.id] = ledger
            self.memberships[owner.id] = owner
            return replace(ledger), replace(owner)

    def get_ledger(self, ledger_id: str) -> Optional[Ledger]:
        with self._data_lock:
            ledger = self.ledgers.get(ledger_id)
            return replace(ledger) if is_live(ledger) else None

    def list_ledgers_for_user(self, user_id: str) -> List[Ledger]:
        with self._data_lock:
            ledger_ids = {
                m.ledger_id for m in self.memberships.values() if m.user_id == user_id
            }
            ledgers = live_only(
                self.ledgers[lid] for lid in ledger_ids if lid in self.ledgers
            )
            return [replace(ledger) for ledger in sorted(ledgers, key=lambda item: item.created_at)]

    def update_ledger(
        self,
        ledger_id: str,
        *,
        name: Optional[str] = None,
        description=_UNSET,
    ) -> Optional[Ledger]:
        with self._data_lock:
            ledger = self.ledgers.get(ledger_id)
            if not is_live(ledger):
                return None
            if name is not None:
                ledger.name = name
            if description is not _UNSET:
                ledger.description = description
            ledger.updated_at = utcnow()
            return replace(ledger)

    def soft_delete_ledger(self, ledger_id: str, now: Optional[datetime] = None) -> bool:
        with self._data_lock:
            ledger = self.ledgers.get(ledger_id)
            if not is_live(ledger):
                return False
            ledger.deleted_at = now or utcnow()
            return True

    # memberships
    def get_membership(self, user_id: str, ledger_id: str) -> Optional[Membership]:
        with self._data_lock:
            found = next(
                (
                    m
                    for m in self.memberships.values()
                    if m.user_id == user_id and m.ledger_id == ledger_id
                ),
                None,
            )
            return replace(found) if found else None

    def get_membership_by_id(self, membership_id: str) -> Optional[Membership]:
        with self._data_lock:
            found = self.memberships.get(membership_id)
            return replace(found) if found else None

    def list_memberships(self, ledger_id: str) -> List[Membership]:
        with self._data_lock:
            members = [m for m in self.memberships.values() if m.ledger_id == ledger_id]
            return [replace(m) for m in sorted(members, key=lambda m: m.joined_at)]

    def count_memberships(self, ledger_id: str) -> int:
        with self._data_lock:
            return sum(1 for m in self.memberships.values() if m.ledger_id == ledger_id)

    def add_membership(
        self,
        user_id: str,
        ledger_id: str,
        role: str,
        *,
        invited_by: Optional[str] = None,
    ) -> Membership:
        with self._data_lock:
            if any(
                m.user_id == user_id and m.ledger_id == ledger_id
                for m in self.memberships.values()
            ):
                raise ConstraintViolation(
                    "membership already exists", {"user_id": user_id, "ledger_id": ledger_id}
                )
            membership = Membership(
                id=new_id(),
                user_id=user_id,
                ledger_id=ledger_id,
                role=role,
                invited_by=invited_by,
            )
            self.memberships[membership.id] = membership
            return replace(membership)

    def update_membership_role(self, membership_id: str, role: str) -> Optional[Membership]:
        with self._data_lock:
            membership = self.memberships.get(membership_id)
            if not membership:
                return None
            membership.role = role
            return replace(membership)

    def delete_membership(self, membership_id: str) -> bool:
        with self._data_lock:
            return self.memberships.pop(membership_id, None) is not None

    # refresh tokens
    def insert_refresh_token(self, record: RefreshToken) -> RefreshToken:
        with self._data_lock:
            if any(t.token == record.token for t in self.refresh_tokens.values()):
                raise ConstraintViolation("refresh token already exists", {"field": "token"})
            self.refresh_tokens[record.id] = replace(record)
            return replace(record)

    def _token_row(self, token: str) -> Optional[RefreshToken]:
        return next((t for t in self.refresh_tokens.values() if t.token == token), None)

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._data_lock:
            row = self._token_row(token)
            return replace(row) if row else None

    def find_valid_refresh_token(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[RefreshToken]:
        with self._data_lock:
            row = self._token_row(token)
            return replace(row) if row and row.is_valid(now) else None

    def revoke_refresh_token(self, record_id: str, now: Optional[datetime] = None) -> bool:
        with self._data_lock:
            row = self.refresh_tokens.get(record_id)
            if not row or row.is_revoked():
                return False
            row.revoked_at = now or utcnow()
            return True

    def consume_refresh_token(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[RefreshToken]:
        """Revoke ``token`` only if it is currently valid, returning the consumed row."""
        now = now or utcnow()
        with self._data_lock:
            row = self._token_row(token)
            if not row or not row.is_valid(now):
                return None
            row.revoked_at = now
            return replace(row)

    def revoke_user_refresh_tokens(self, user_id: str, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._data_lock:
            revoked = 0
            for row in self.refresh_tokens.values():
                if row.user_id == user_id and not row.is_revoked():
                    row.revoked_at = now
                    revoked += 1
            return revoked

    def count_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._data_lock:
            return sum(1 for row in self.refresh_tokens.values() if row.is_expired(now))

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._data_lock:
            stale = [rid for rid, row in self.refresh_tokens.items() if row.is_expired(now)]
            for rid in stale:
                self.refresh_tokens.pop(rid, None)
            if stale:
                self.logger.info("refresh_tokens_purged", count=len(stale))
            return len(stale)

    # categories
    def list_categories(self, ledger_id: str) -> List[Category]:
        with self._data_lock:
            visible = [
                c for c in self.categories.values() if c.is_default or c.belongs_to(ledger_id)
            ]
            return [replace(c) for c in sort_categories(visible)]

    def get_category(self, category_id: str) -> Optional[Category]:
        with self._data_lock:
            category = self.categories.get(category_id)
            return replace(category) if category else None

    def get_categories(self, category_ids: Iterable[str]) -> Dict[str, Category]:
        with self._data_lock:
            return {
                cid: replace(self.categories[cid])
                for cid in set(category_ids)
                if cid in self.categories
            }

    def create_category(
        self,
        ledger_id: str,
        name: str,
        *,
        color: str = "#808080",
        icon: Optional[str] = None,
    ) -> Category:
        with self._data_lock:
            if any(
                c.belongs_to(ledger_id) and c.name == name for c in self.categories.values()
            ):
                raise ConstraintViolation("category name already exists", {"field": "name"})
            category = Category(
                id=new_id(), name=name, ledger_id=ledger_id, color=color, icon=icon
            )
            self.categories[category.id] = category
            return replace(category)

    def delete_category(self, category_id: str) -> bool:
        with self._data_lock:
            category = self.categories.get(category_id)
            if not category or category.is_default:
                return False
            for expense in self.expenses.values():
                if expense.category_id == category_id and not is_live(expense):
                    expense.category_id = None
            self.categories.pop(category_id, None)
            return True

    def count_expenses_for_category(self, category_id: str) -> int:
        with self._data_lock:
            return sum(
                1
                for e in live_only(self.expenses.values())
                if e.category_id == category_id
            )

    # expenses
    def create_expense(
        self,
        ledger_id: str,
        created_by: str,
        *,
        amount: Decimal,
        description: str,
        expense_date: date,
        category_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Expense:
        with self._data_lock:
            if not is_live(self.ledgers.get(ledger_id)):
                raise ConstraintViolation("ledger does not exist", {"ledger_id": ledger_id})
            if category_id is not None and category_id not in self.categories:
                raise ConstraintViolation(
                    "category does not exist", {"field": "category_id"}
                )
            expense = Expense(
                id=new_id(),
                ledger_id=ledger_id,
                amount=amount,
                description=description,
                expense_date=expense_date,
                created_by=created_by,
                category_id=category_id,
                payment_method=payment_method,
            )
            self.expenses[expense.id] = expense
            return replace(expense)

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        with self._data_lock:
            expense = self.expenses.get(expense_id)
            return replace(expense) if is_live(expense) else None

    def list_expenses(
        self,
        ledger_id: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[str] = None,
        page: int = 0,
        size: int = 20,
        max_size: int = 100,
    ) -> Page[Expense]:
        validate_page_request(page, size, max_size=max_size)
        with self._data_lock:
            matches = [
                e
                for e in live_only(self.expenses.values())
                if e.ledger_id == ledger_id
                and (start_date is None or e.expense_date >= start_date)
                and (end_date is None or e.expense_date <= end_date)
                and (category_id is None or e.category_id == category_id)
            ]
            matches.sort(key=lambda e: (e.expense_date, e.created_at), reverse=True)
            return paginate([replace(e) for e in matches], page, size, max_size=max_size)

    def update_expense(
        self,
        expense_id: str,
        *,
        amount: Optional[Decimal] = None,
        description: Optional[str] = None,
        expense_date: Optional[date] = None,
        category_id=_UNSET,
        payment_method=_UNSET,
    ) -> Optional[Expense]:
        with self._data_lock:
            expense = self.expenses.get(expense_id)
            if not is_live(expense):
                return None
            if amount is not None:
                expense.amount = amount
            if description is not None:
                expense.description = description
            if expense_date is not None:
                expense.expense_date = expense_date
            if category_id is not _UNSET:
                expense.category_id = category_id
            if payment_method is not _UNSET:
                expense.payment_method = payment_method
            expense.updated_at = utcnow()
            return replace(expense)

    def soft_delete_expense(self, expense_id: str, now: Optional[datetime] = None) -> bool:
        with self._data_lock:
            expense = self.expenses.get(expense_id)
            if not is_live(expense):
                return False
            expense.deleted_at = now or utcnow()
            return True
