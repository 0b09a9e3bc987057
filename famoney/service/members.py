from __future__ import annotations

from dataclasses import dataclass
from typing import List

from famoney.logging import get_logger
from famoney.service.errors import BadRequestError, NotFoundError
from famoney.service.membership import LedgerAccess, LedgerContext
from famoney.service.permissions import (
    Action,
    Role,
    authorize_member_removal,
    authorize_role_change,
    ensure_assignable,
)
from famoney.storage.models import Membership, User

logger = get_logger(__name__)


@dataclass
class MemberView:
    membership: Membership
    user: User

    @property
    def role(self) -> Role:
        return Role.parse(self.membership.role)


class MemberService:
    """Membership changes within one ledger.

    The ledger always keeps exactly one OWNER: nobody can be made OWNER and
    the OWNER's own membership can be neither re-roled nor removed.
    """

    def __init__(self, store, access: LedgerAccess) -> None:
        self.store = store
        self.access = access

    def list_members(self, user_id: str, ledger_id: str) -> List[MemberView]:
        self.access.require(user_id, ledger_id)
        views = []
        for membership in self.store.list_memberships(ledger_id):
            user = self.store.get_user(membership.user_id)
            if user:
                views.append(MemberView(membership=membership, user=user))
        return views

    def invite_member(
        self, user_id: str, ledger_id: str, email: str, role: Role | str = Role.MEMBER
    ) -> MemberView:
        ctx = self.access.require(user_id, ledger_id, Action.INVITE_MEMBER)
        assigned = ensure_assignable(role)
        invitee = self.store.get_user_by_email(email.strip().lower())
        if not invitee:
            raise NotFoundError("user not found", detail={"field": "email"})
        if self.access.resolver.resolve(invitee.id, ledger_id) is not None:
            raise BadRequestError(
                "user is already a member of this ledger", detail={"field": "email"}
            )
        membership = self.store.add_membership(
            invitee.id, ledger_id, assigned.value, invited_by=ctx.user_id
        )
        logger.info(
            "member_invited",
            ledger_id=ledger_id,
            user_id=invitee.id,
            role=assigned.value,
            invited_by=ctx.user_id,
        )
        return MemberView(membership=membership, user=invitee)

    def update_member_role(
        self, user_id: str, ledger_id: str, member_id: str, role: Role | str
    ) -> MemberView:
        ctx = self.access.require(user_id, ledger_id, Action.CHANGE_MEMBER_ROLE)
        target = self._member_in_ledger(ctx, member_id)
        new_role = authorize_role_change(ctx.membership, target, role)
        updated = self.store.update_membership_role(target.id, new_role.value)
        if not updated:
            raise NotFoundError("member not found", detail={"member_id": member_id})
        logger.info(
            "member_role_changed",
            ledger_id=ledger_id,
            member_id=member_id,
            role=new_role.value,
        )
        return self._view(updated)

    def remove_member(self, user_id: str, ledger_id: str, member_id: str) -> None:
        ctx = self.access.require(user_id, ledger_id)
        target = self._member_in_ledger(ctx, member_id)
        authorize_member_removal(ctx.membership, target)
        self.store.delete_membership(target.id)
        logger.info(
            "member_removed",
            ledger_id=ledger_id,
            member_id=member_id,
            self_removal=target.user_id == ctx.user_id,
        )

    def _member_in_ledger(self, ctx: LedgerContext, member_id: str) -> Membership:
        target = self.store.get_membership_by_id(member_id)
        if not target or target.ledger_id != ctx.ledger.id:
            raise NotFoundError("member not found", detail={"member_id": member_id})
        return target

    def _view(self, membership: Membership) -> MemberView:
        user = self.store.get_user(membership.user_id)
        if not user:
            raise NotFoundError("user not found")
        return MemberView(membership=membership, user=user)
