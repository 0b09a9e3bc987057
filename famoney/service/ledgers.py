from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Optional

from famoney.logging import get_logger
from famoney.service.errors import NotFoundError
from famoney.service.membership import LedgerAccess, LedgerContext
from famoney.service.permissions import Action, Role
from famoney.storage.models import Ledger

logger = get_logger(__name__)


@dataclass
class LedgerSummary:
    ledger: Ledger
    role: Role
    member_count: int


class LedgerService:
    def __init__(self, store, access: LedgerAccess, *, default_currency: str = "KRW") -> None:
        self.store = store
        self.access = access
        self.default_currency = default_currency

    def create_ledger(
        self,
        user_id: str,
        name: str,
        *,
        description: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> LedgerSummary:
        ledger, owner = self.store.create_ledger(
            name,
            user_id,
            description=description,
            currency=currency or self.default_currency,
        )
        logger.info("ledger_created", ledger_id=ledger.id, user_id=user_id)
        return LedgerSummary(ledger=ledger, role=Role.parse(owner.role), member_count=1)

    def list_ledgers(self, user_id: str) -> List[LedgerSummary]:
        summaries = []
        for ledger in self.store.list_ledgers_for_user(user_id):
            membership = self.access.resolver.resolve(user_id, ledger.id)
            if membership is None:
                continue
            summaries.append(
                LedgerSummary(
                    ledger=ledger,
                    role=Role.parse(membership.role),
                    member_count=self.store.count_memberships(ledger.id),
                )
            )
        return summaries

    def get_ledger(self, user_id: str, ledger_id: str) -> LedgerSummary:
        ctx = self.access.require(user_id, ledger_id)
        return self._summary(ctx)

    def update_ledger(self, user_id: str, ledger_id: str, **changes: Any) -> LedgerSummary:
        ctx = self.access.require(user_id, ledger_id, Action.MODIFY_LEDGER)
        allowed = {
            k: v for k, v in changes.items() if k in ("name", "description")
        }
        ledger = self.store.update_ledger(ledger_id, **allowed)
        if not ledger:
            raise NotFoundError("ledger not found", detail={"ledger_id": ledger_id})
        logger.info("ledger_updated", ledger_id=ledger_id, user_id=user_id)
        return self._summary(LedgerContext(ledger=ledger, membership=ctx.membership))

    def delete_ledger(self, user_id: str, ledger_id: str) -> None:
        self.access.require(user_id, ledger_id, Action.DELETE_LEDGER)
        if not self.store.soft_delete_ledger(ledger_id):
            raise NotFoundError("ledger not found", detail={"ledger_id": ledger_id})
        logger.info("ledger_deleted", ledger_id=ledger_id, user_id=user_id)

    def _summary(self, ctx: LedgerContext) -> LedgerSummary:
        return LedgerSummary(
            ledger=ctx.ledger,
            role=ctx.role,
            member_count=self.store.count_memberships(ctx.ledger.id),
        )
