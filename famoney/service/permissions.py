"""Ledger-scoped authorization decisions.

Everything here is a pure function of roles and ownership facts. Nothing
reads a store; callers resolve the membership first and pass the role in.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional

from famoney.service.errors import BadRequestError, ForbiddenError
from famoney.storage.models import Membership


class Role(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            raise BadRequestError(
                f"unknown role: {value}", detail={"field": "role"}
            ) from None


# Lower rank means more privilege.
_RANKS: Mapping[Role, int] = {
    Role.OWNER: 0,
    Role.ADMIN: 1,
    Role.MEMBER: 2,
    Role.VIEWER: 3,
}


def has_at_least(role: Role | str, required: Role | str) -> bool:
    return Role.parse(role).rank <= Role.parse(required).rank


class Action(str, Enum):
    READ = "read"
    MODIFY_LEDGER = "modify_ledger"
    DELETE_LEDGER = "delete_ledger"
    MANAGE_CATEGORY = "manage_category"
    CREATE_EXPENSE = "create_expense"
    MODIFY_OWN_EXPENSE = "modify_own_expense"
    MODIFY_ANY_EXPENSE = "modify_any_expense"
    INVITE_MEMBER = "invite_member"
    REMOVE_MEMBER = "remove_member"
    LEAVE_LEDGER = "leave_ledger"
    CHANGE_MEMBER_ROLE = "change_member_role"


_ALL = frozenset(Role)
_ADMIN_UP = frozenset({Role.OWNER, Role.ADMIN})
_WRITERS = frozenset({Role.OWNER, Role.ADMIN, Role.MEMBER})

POLICY: Mapping[Action, frozenset[Role]] = {
    Action.READ: _ALL,
    Action.MODIFY_LEDGER: _ADMIN_UP,
    Action.DELETE_LEDGER: frozenset({Role.OWNER}),
    Action.MANAGE_CATEGORY: _ADMIN_UP,
    Action.CREATE_EXPENSE: _WRITERS,
    Action.MODIFY_OWN_EXPENSE: _WRITERS,
    Action.MODIFY_ANY_EXPENSE: _ADMIN_UP,
    Action.INVITE_MEMBER: _ADMIN_UP,
    Action.REMOVE_MEMBER: _ADMIN_UP,
    # OWNER appears here but leaving is blocked by the owner-target guard
    Action.LEAVE_LEDGER: _ALL,
    Action.CHANGE_MEMBER_ROLE: frozenset({Role.OWNER}),
}


def is_allowed(role: Role | str, action: Action) -> bool:
    return Role.parse(role) in POLICY[action]


def authorize(role: Role | str, action: Action) -> None:
    """Raise ``ForbiddenError`` unless ``role`` may perform ``action``."""
    if not is_allowed(role, action):
        raise ForbiddenError(
            "insufficient role for this action",
            detail={"action": action.value, "role": Role.parse(role).value},
        )


def can_modify_expense(role: Role | str, actor_id: str, creator_id: str) -> bool:
    """Creator with a writing role, or anyone ADMIN and above."""
    if is_allowed(role, Action.MODIFY_ANY_EXPENSE):
        return True
    return actor_id == creator_id and is_allowed(role, Action.MODIFY_OWN_EXPENSE)


def authorize_expense_change(role: Role | str, actor_id: str, creator_id: str) -> None:
    if not can_modify_expense(role, actor_id, creator_id):
        raise ForbiddenError("only the creator or an admin may change this expense")


def ensure_assignable(role: Role | str) -> Role:
    """Return the parsed role, rejecting OWNER since ownership never moves."""
    parsed = Role.parse(role)
    if parsed is Role.OWNER:
        raise BadRequestError(
            "the OWNER role cannot be assigned", detail={"field": "role"}
        )
    return parsed


def ensure_not_owner_target(membership: Membership) -> None:
    if Role.parse(membership.role) is Role.OWNER:
        raise BadRequestError("the ledger owner cannot be changed or removed")


def authorize_role_change(actor: Membership, target: Membership, new_role: Role | str) -> Role:
    authorize(actor.role, Action.CHANGE_MEMBER_ROLE)
    ensure_not_owner_target(target)
    return ensure_assignable(new_role)


def authorize_member_removal(actor: Membership, target: Membership) -> None:
    """OWNER target is invalid; self-removal is a leave; otherwise ADMIN and above."""
    ensure_not_owner_target(target)
    if actor.user_id == target.user_id:
        authorize(actor.role, Action.LEAVE_LEDGER)
        return
    authorize(actor.role, Action.REMOVE_MEMBER)


def role_of(membership: Optional[Membership]) -> Optional[Role]:
    return Role.parse(membership.role) if membership is not None else None


__all__ = [
    "Action",
    "POLICY",
    "Role",
    "authorize",
    "authorize_expense_change",
    "authorize_member_removal",
    "authorize_role_change",
    "can_modify_expense",
    "ensure_assignable",
    "ensure_not_owner_target",
    "has_at_least",
    "is_allowed",
    "role_of",
]
