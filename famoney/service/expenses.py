from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from famoney.logging import get_logger
from famoney.service.errors import BadRequestError, NotFoundError
from famoney.service.membership import LedgerAccess, LedgerContext
from famoney.service.permissions import Action, authorize_expense_change
from famoney.storage.common import is_visible_to_ledger
from famoney.storage.models import Category, Expense, Page, User

logger = get_logger(__name__)

MIN_AMOUNT = Decimal("0.01")
MAX_INTEGER_DIGITS = 13
MAX_FRACTION_DIGITS = 2
MAX_DESCRIPTION_LENGTH = 255
MAX_PAYMENT_METHOD_LENGTH = 50

# Display name for expenses whose creator account no longer exists
UNKNOWN_CREATOR = "Unknown"


def normalize_amount(value: Any) -> Decimal:
    """Parse an expense amount: positive, <= 2 decimals, <= 13 integer digits."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise BadRequestError("amount must be a number", detail={"field": "amount"}) from None
    if not amount.is_finite() or amount < MIN_AMOUNT:
        raise BadRequestError(
            f"amount must be at least {MIN_AMOUNT}", detail={"field": "amount"}
        )
    _, digits, exponent = amount.as_tuple()
    fraction_digits = max(0, -exponent)
    integer_digits = max(0, len(digits) + exponent)
    if fraction_digits > MAX_FRACTION_DIGITS or integer_digits > MAX_INTEGER_DIGITS:
        raise BadRequestError(
            "amount allows at most 13 integer digits and 2 decimal places",
            detail={"field": "amount"},
        )
    return amount


def _check_description(description: str) -> str:
    if not description or not description.strip():
        raise BadRequestError("description is required", detail={"field": "description"})
    if len(description) > MAX_DESCRIPTION_LENGTH:
        raise BadRequestError(
            f"description must be at most {MAX_DESCRIPTION_LENGTH} characters",
            detail={"field": "description"},
        )
    return description


def _check_payment_method(payment_method: Optional[str]) -> Optional[str]:
    if payment_method is not None and len(payment_method) > MAX_PAYMENT_METHOD_LENGTH:
        raise BadRequestError(
            f"payment method must be at most {MAX_PAYMENT_METHOD_LENGTH} characters",
            detail={"field": "payment_method"},
        )
    return payment_method


@dataclass
class ExpenseDetail:
    """An expense with its category and creator resolved for display."""

    expense: Expense
    category: Optional[Category]
    creator: Optional[User]


class ExpenseService:
    def __init__(
        self,
        store,
        access: LedgerAccess,
        *,
        default_page_size: int = 20,
        max_page_size: int = 100,
    ) -> None:
        self.store = store
        self.access = access
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    def list_expenses(
        self,
        user_id: str,
        ledger_id: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[str] = None,
        page: int = 0,
        size: Optional[int] = None,
    ) -> Page[Expense]:
        self.access.require(user_id, ledger_id)
        if start_date and end_date and start_date > end_date:
            raise BadRequestError(
                "start_date must not be after end_date", detail={"field": "start_date"}
            )
        return self.store.list_expenses(
            ledger_id,
            start_date=start_date,
            end_date=end_date,
            category_id=category_id,
            page=page,
            size=size or self.default_page_size,
            max_size=self.max_page_size,
        )

    def get_expense(self, user_id: str, ledger_id: str, expense_id: str) -> Expense:
        ctx = self.access.require(user_id, ledger_id)
        return self._expense_in_ledger(ctx, expense_id)

    def create_expense(
        self,
        user_id: str,
        ledger_id: str,
        *,
        amount: Any,
        description: str,
        expense_date: date,
        category_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Expense:
        ctx = self.access.require(user_id, ledger_id, Action.CREATE_EXPENSE)
        if category_id is not None:
            self._check_category(ctx, category_id)
        expense = self.store.create_expense(
            ledger_id,
            user_id,
            amount=normalize_amount(amount),
            description=_check_description(description),
            expense_date=expense_date,
            category_id=category_id,
            payment_method=_check_payment_method(payment_method),
        )
        logger.info("expense_created", ledger_id=ledger_id, expense_id=expense.id)
        return expense

    def update_expense(
        self, user_id: str, ledger_id: str, expense_id: str, **changes: Any
    ) -> Expense:
        """Apply a partial update; only the creator or an ADMIN and above may edit."""
        ctx = self.access.require(user_id, ledger_id)
        expense = self._expense_in_ledger(ctx, expense_id)
        authorize_expense_change(ctx.role, user_id, expense.created_by)

        fields: dict[str, Any] = {}
        if changes.get("amount") is not None:
            fields["amount"] = normalize_amount(changes["amount"])
        if changes.get("description") is not None:
            fields["description"] = _check_description(changes["description"])
        if changes.get("expense_date") is not None:
            fields["expense_date"] = changes["expense_date"]
        if "category_id" in changes:
            if changes["category_id"] is not None:
                self._check_category(ctx, changes["category_id"])
            fields["category_id"] = changes["category_id"]
        if "payment_method" in changes:
            fields["payment_method"] = _check_payment_method(changes["payment_method"])

        updated = self.store.update_expense(expense_id, **fields)
        if not updated:
            raise NotFoundError("expense not found", detail={"expense_id": expense_id})
        logger.info("expense_updated", ledger_id=ledger_id, expense_id=expense_id)
        return updated

    def delete_expense(self, user_id: str, ledger_id: str, expense_id: str) -> None:
        ctx = self.access.require(user_id, ledger_id)
        expense = self._expense_in_ledger(ctx, expense_id)
        authorize_expense_change(ctx.role, user_id, expense.created_by)
        self.store.soft_delete_expense(expense_id)
        logger.info("expense_deleted", ledger_id=ledger_id, expense_id=expense_id)

    def describe(self, expenses: List[Expense]) -> List[ExpenseDetail]:
        """Resolve categories and creators with one lookup each per batch.

        A creator whose account is gone resolves to ``None``.
        """
        categories = self.store.get_categories(
            e.category_id for e in expenses if e.category_id
        )
        creators = self.store.get_users(e.created_by for e in expenses)
        return [
            ExpenseDetail(
                expense=e,
                category=categories.get(e.category_id) if e.category_id else None,
                creator=creators.get(e.created_by),
            )
            for e in expenses
        ]

    def _expense_in_ledger(self, ctx: LedgerContext, expense_id: str) -> Expense:
        expense = self.store.get_expense(expense_id)
        if not expense or expense.ledger_id != ctx.ledger.id:
            raise NotFoundError("expense not found", detail={"expense_id": expense_id})
        return expense

    def _check_category(self, ctx: LedgerContext, category_id: str) -> None:
        category = self.store.get_category(category_id)
        if not category or not is_visible_to_ledger(category, ctx.ledger.id):
            raise NotFoundError("category not found", detail={"field": "category_id"})
