from __future__ import annotations

from typing import List, Optional

from famoney.logging import get_logger
from famoney.service.errors import BadRequestError, ForbiddenError, NotFoundError
from famoney.service.membership import LedgerAccess
from famoney.service.permissions import Action
from famoney.storage.models import Category

logger = get_logger(__name__)


class CategoryService:
    def __init__(self, store, access: LedgerAccess) -> None:
        self.store = store
        self.access = access

    def list_categories(self, user_id: str, ledger_id: str) -> List[Category]:
        self.access.require(user_id, ledger_id)
        return self.store.list_categories(ledger_id)

    def create_category(
        self,
        user_id: str,
        ledger_id: str,
        name: str,
        *,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Category:
        self.access.require(user_id, ledger_id, Action.MANAGE_CATEGORY)
        if any(
            c.belongs_to(ledger_id) and c.name == name
            for c in self.store.list_categories(ledger_id)
        ):
            raise BadRequestError(
                "category name already exists in this ledger", detail={"field": "name"}
            )
        category = self.store.create_category(
            ledger_id, name, color=color or "#808080", icon=icon
        )
        logger.info("category_created", ledger_id=ledger_id, category_id=category.id)
        return category

    def delete_category(self, user_id: str, ledger_id: str, category_id: str) -> None:
        """Delete a custom category that no live expense still references."""
        self.access.require(user_id, ledger_id, Action.MANAGE_CATEGORY)
        category = self.store.get_category(category_id)
        if not category:
            raise NotFoundError("category not found", detail={"category_id": category_id})
        if category.is_default:
            raise BadRequestError("default categories cannot be deleted")
        if not category.belongs_to(ledger_id):
            raise ForbiddenError("category belongs to another ledger")
        in_use = self.store.count_expenses_for_category(category_id)
        if in_use:
            raise BadRequestError(
                f"category is used by {in_use} expense(s)",
                detail={"category_id": category_id, "expense_count": in_use},
            )
        self.store.delete_category(category_id)
        logger.info("category_deleted", ledger_id=ledger_id, category_id=category_id)
