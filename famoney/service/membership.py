from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from famoney.service.errors import ForbiddenError, NotFoundError
from famoney.service.permissions import Action, Role, authorize
from famoney.storage.models import Ledger, Membership


class MembershipStore(Protocol):
    def get_ledger(self, ledger_id: str) -> Optional[Ledger]:
        ...

    def get_membership(self, user_id: str, ledger_id: str) -> Optional[Membership]:
        ...


@dataclass(frozen=True)
class LedgerContext:
    """An active ledger together with the caller's membership in it."""

    ledger: Ledger
    membership: Membership

    @property
    def role(self) -> Role:
        return Role.parse(self.membership.role)

    @property
    def user_id(self) -> str:
        return self.membership.user_id

    def authorize(self, action: Action) -> None:
        authorize(self.role, action)


class MembershipResolver:
    """Single source of truth for "is this user in this ledger, and as what"."""

    def __init__(self, store: MembershipStore) -> None:
        self.store = store

    def resolve(self, user_id: str, ledger_id: str) -> Optional[Membership]:
        return self.store.get_membership(user_id, ledger_id)


class LedgerAccess:
    """Request guard for ledger-scoped operations.

    A ledger that does not exist (or is soft-deleted) is ``NotFoundError``; an
    existing ledger the caller is not a member of is ``ForbiddenError``.
    """

    def __init__(self, store: MembershipStore, resolver: MembershipResolver) -> None:
        self.store = store
        self.resolver = resolver

    def require(
        self, user_id: str, ledger_id: str, action: Action = Action.READ
    ) -> LedgerContext:
        ledger = self.store.get_ledger(ledger_id)
        if not ledger:
            raise NotFoundError("ledger not found", detail={"ledger_id": ledger_id})
        membership = self.resolver.resolve(user_id, ledger_id)
        if membership is None:
            raise ForbiddenError("not a member of this ledger")
        ctx = LedgerContext(ledger=ledger, membership=membership)
        ctx.authorize(action)
        return ctx
