"""Unit tests for ledger role policy.

Tests for:
- Role hierarchy and parsing
- The action table per role
- Expense ownership rule
- OWNER invariants on role change and removal
"""

import pytest

from famoney.service.errors import BadRequestError, ForbiddenError
from famoney.service.permissions import (
    Action,
    POLICY,
    Role,
    authorize,
    authorize_member_removal,
    authorize_role_change,
    can_modify_expense,
    ensure_assignable,
    has_at_least,
    is_allowed,
    role_of,
)
from famoney.storage.models import Membership


def _member(role: str, user_id: str = "u-actor", member_id: str = "m-actor") -> Membership:
    return Membership(id=member_id, user_id=user_id, ledger_id="l-1", role=role)


EXPECTED = {
    Role.OWNER: {
        Action.READ, Action.MODIFY_LEDGER, Action.DELETE_LEDGER, Action.MANAGE_CATEGORY,
        Action.CREATE_EXPENSE, Action.MODIFY_OWN_EXPENSE, Action.MODIFY_ANY_EXPENSE,
        Action.INVITE_MEMBER, Action.REMOVE_MEMBER, Action.LEAVE_LEDGER,
        Action.CHANGE_MEMBER_ROLE,
    },
    Role.ADMIN: {
        Action.READ, Action.MODIFY_LEDGER, Action.MANAGE_CATEGORY, Action.CREATE_EXPENSE,
        Action.MODIFY_OWN_EXPENSE, Action.MODIFY_ANY_EXPENSE, Action.INVITE_MEMBER,
        Action.REMOVE_MEMBER, Action.LEAVE_LEDGER,
    },
    Role.MEMBER: {
        Action.READ, Action.CREATE_EXPENSE, Action.MODIFY_OWN_EXPENSE, Action.LEAVE_LEDGER,
    },
    Role.VIEWER: {Action.READ, Action.LEAVE_LEDGER},
}


class TestRoles:
    def test_hierarchy_order(self):
        ordered = sorted(Role, key=lambda r: r.rank)
        assert ordered == [Role.OWNER, Role.ADMIN, Role.MEMBER, Role.VIEWER]

    def test_has_at_least(self):
        assert has_at_least(Role.OWNER, Role.ADMIN)
        assert has_at_least("ADMIN", "ADMIN")
        assert not has_at_least(Role.VIEWER, Role.MEMBER)

    def test_parse_is_case_insensitive(self):
        assert Role.parse("admin") is Role.ADMIN
        assert Role.parse(Role.VIEWER) is Role.VIEWER

    def test_parse_rejects_unknown_role(self):
        with pytest.raises(BadRequestError):
            Role.parse("SUPERUSER")

    def test_role_of(self):
        assert role_of(None) is None
        assert role_of(_member("MEMBER")) is Role.MEMBER


class TestPolicyTable:
    def test_every_action_has_an_entry(self):
        assert set(POLICY) == set(Action)

    @pytest.mark.parametrize("role", list(Role))
    def test_allowed_actions_per_role(self, role):
        allowed = {action for action in Action if is_allowed(role, action)}
        assert allowed == EXPECTED[role]

    def test_higher_roles_include_lower_permissions(self):
        ordered = sorted(Role, key=lambda r: r.rank)
        for higher, lower in zip(ordered, ordered[1:]):
            assert EXPECTED[lower] <= EXPECTED[higher]

    def test_authorize_raises_forbidden(self):
        with pytest.raises(ForbiddenError) as excinfo:
            authorize(Role.VIEWER, Action.CREATE_EXPENSE)
        assert excinfo.value.status_code == 403
        assert excinfo.value.detail["action"] == "create_expense"

    def test_authorize_allows(self):
        authorize(Role.ADMIN, Action.MODIFY_LEDGER)


class TestExpenseOwnership:
    @pytest.mark.parametrize(
        "role,own,expected",
        [
            (Role.OWNER, False, True),
            (Role.ADMIN, False, True),
            (Role.MEMBER, True, True),
            (Role.MEMBER, False, False),
            (Role.VIEWER, True, False),
            (Role.VIEWER, False, False),
        ],
    )
    def test_can_modify_expense(self, role, own, expected):
        creator = "u-actor" if own else "u-other"
        assert can_modify_expense(role, "u-actor", creator) is expected


class TestMembershipInvariants:
    def test_owner_is_never_assignable(self):
        with pytest.raises(BadRequestError):
            ensure_assignable("OWNER")
        assert ensure_assignable("viewer") is Role.VIEWER

    def test_owner_may_change_member_role(self):
        actor = _member("OWNER")
        target = _member("MEMBER", user_id="u-t", member_id="m-t")
        assert authorize_role_change(actor, target, "ADMIN") is Role.ADMIN

    def test_admin_may_not_change_roles(self):
        actor = _member("ADMIN")
        target = _member("MEMBER", user_id="u-t", member_id="m-t")
        with pytest.raises(ForbiddenError):
            authorize_role_change(actor, target, "VIEWER")

    def test_owner_target_cannot_be_re_roled(self):
        owner = _member("OWNER")
        with pytest.raises(BadRequestError):
            authorize_role_change(owner, owner, "ADMIN")

    def test_promotion_to_owner_is_rejected(self):
        actor = _member("OWNER")
        target = _member("ADMIN", user_id="u-t", member_id="m-t")
        with pytest.raises(BadRequestError):
            authorize_role_change(actor, target, "OWNER")

    def test_owner_cannot_leave(self):
        owner = _member("OWNER")
        with pytest.raises(BadRequestError):
            authorize_member_removal(owner, owner)

    def test_nobody_can_remove_the_owner(self):
        admin = _member("ADMIN")
        owner = _member("OWNER", user_id="u-o", member_id="m-o")
        with pytest.raises(BadRequestError):
            authorize_member_removal(admin, owner)

    @pytest.mark.parametrize("role", ["ADMIN", "MEMBER", "VIEWER"])
    def test_non_owner_may_leave(self, role):
        me = _member(role)
        authorize_member_removal(me, me)

    def test_member_cannot_remove_others(self):
        actor = _member("MEMBER")
        target = _member("VIEWER", user_id="u-t", member_id="m-t")
        with pytest.raises(ForbiddenError):
            authorize_member_removal(actor, target)

    def test_admin_can_remove_others(self):
        actor = _member("ADMIN")
        target = _member("MEMBER", user_id="u-t", member_id="m-t")
        authorize_member_removal(actor, target)
