"""Unit tests for the in-memory store and shared storage helpers."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from famoney.storage.common import (
    DEFAULT_CATEGORIES,
    is_live,
    live_only,
    paginate,
    validate_page_request,
)
from famoney.storage.errors import ConstraintViolation
from famoney.storage.memory import MemoryStore
from famoney.storage.models import Page, RefreshToken, utcnow


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def user(store):
    return store.create_user("Owner@Example.com", "hash", "Owner")


@pytest.fixture
def ledger(store, user):
    ledger, _ = store.create_ledger("Household", user.id)
    return ledger


class TestHelpers:
    def test_is_live(self, store, user):
        assert is_live(user)
        assert not is_live(None)
        store.soft_delete_user(user.id)
        assert not is_live(store.users[user.id])

    def test_live_only(self, store, user):
        other = store.create_user("b@x.com", "hash", "B")
        store.soft_delete_user(other.id)
        assert [u.id for u in live_only(store.users.values())] == [user.id]

    @pytest.mark.parametrize("page,size", [(-1, 10), (0, 0), (0, 101)])
    def test_invalid_page_requests(self, page, size):
        with pytest.raises(ConstraintViolation):
            validate_page_request(page, size)

    def test_custom_max_size(self):
        validate_page_request(0, 500, max_size=500)
        with pytest.raises(ConstraintViolation):
            validate_page_request(0, 501, max_size=500)

    def test_paginate_slices(self):
        page = paginate(list(range(7)), 1, 3)
        assert page.items == [3, 4, 5]
        assert page.total == 7
        assert page.total_pages == 3
        assert not page.is_first and not page.is_last

    def test_empty_page_is_first_and_last(self):
        page = Page(items=[], page=0, size=20, total=0)
        assert page.total_pages == 0
        assert page.is_first and page.is_last

    def test_refresh_token_expiry_boundary(self):
        row = RefreshToken.new("u", "tok", 60)
        assert row.is_valid(row.created_at)
        assert row.is_expired(row.expires_at)
        assert not row.is_valid(row.expires_at)


class TestUsers:
    def test_email_is_normalized(self, user):
        assert user.email == "owner@example.com"

    def test_duplicate_live_email_rejected(self, store, user):
        with pytest.raises(ConstraintViolation):
            store.create_user("OWNER@example.com", "hash", "Dup")

    def test_lookup_is_case_insensitive(self, store, user):
        assert store.get_user_by_email("OWNER@EXAMPLE.COM").id == user.id

    def test_soft_deleted_user_is_hidden(self, store, user):
        assert store.soft_delete_user(user.id)
        assert store.get_user(user.id) is None
        assert store.get_user_by_email(user.email) is None
        assert not store.soft_delete_user(user.id)

    def test_returned_records_are_copies(self, store, user):
        fetched = store.get_user(user.id)
        fetched.name = "Mutated"
        assert store.get_user(user.id).name == "Owner"

    def test_update_user_can_clear_profile_image(self, store, user):
        store.update_user(user.id, profile_image="https://img")
        cleared = store.update_user(user.id, profile_image=None)
        assert cleared.profile_image is None
        assert cleared.name == "Owner"


class TestLedgersAndMemberships:
    def test_create_ledger_adds_owner(self, store, user):
        ledger, owner = store.create_ledger("Trip", user.id, currency="USD")
        assert owner.role == "OWNER"
        assert owner.ledger_id == ledger.id
        assert store.count_memberships(ledger.id) == 1

    def test_create_ledger_for_unknown_user_fails(self, store):
        with pytest.raises(ConstraintViolation):
            store.create_ledger("Orphan", "missing-user")
        assert store.ledgers == {}

    def test_duplicate_membership_rejected(self, store, ledger, user):
        with pytest.raises(ConstraintViolation):
            store.add_membership(user.id, ledger.id, "MEMBER")

    def test_deleted_ledger_is_hidden(self, store, ledger, user):
        store.soft_delete_ledger(ledger.id)
        assert store.get_ledger(ledger.id) is None
        assert store.list_ledgers_for_user(user.id) == []

    def test_update_ledger_partial(self, store, ledger):
        store.update_ledger(ledger.id, description="notes")
        updated = store.update_ledger(ledger.id, name="Renamed")
        assert updated.description == "notes"
        assert updated.name == "Renamed"
        assert updated.currency == "KRW"

    def test_role_update_and_delete(self, store, ledger):
        invitee = store.create_user("m@x.com", "hash", "M")
        membership = store.add_membership(invitee.id, ledger.id, "MEMBER")
        assert store.update_membership_role(membership.id, "VIEWER").role == "VIEWER"
        assert store.delete_membership(membership.id)
        assert store.get_membership(invitee.id, ledger.id) is None


class TestRefreshTokens:
    def test_consume_is_compare_and_set(self, store, user):
        row = store.insert_refresh_token(RefreshToken.new(user.id, "tok-1", 60))

        consumed = store.consume_refresh_token("tok-1")
        assert consumed.id == row.id
        assert consumed.revoked_at is not None
        assert store.consume_refresh_token("tok-1") is None

    def test_consume_rejects_expired(self, store, user):
        row = store.insert_refresh_token(RefreshToken.new(user.id, "tok-1", 60))
        assert store.consume_refresh_token("tok-1", row.expires_at) is None

    def test_duplicate_token_rejected(self, store, user):
        store.insert_refresh_token(RefreshToken.new(user.id, "tok-1", 60))
        with pytest.raises(ConstraintViolation):
            store.insert_refresh_token(RefreshToken.new(user.id, "tok-1", 60))

    def test_revoke_user_tokens_counts_only_active(self, store, user):
        store.insert_refresh_token(RefreshToken.new(user.id, "a", 60))
        row = store.insert_refresh_token(RefreshToken.new(user.id, "b", 60))
        store.revoke_refresh_token(row.id)
        assert store.revoke_user_refresh_tokens(user.id) == 1

    def test_purge_and_count_expired(self, store, user):
        store.insert_refresh_token(RefreshToken.new(user.id, "short", 60))
        store.insert_refresh_token(RefreshToken.new(user.id, "stale", 60))
        later = utcnow() + timedelta(seconds=120)
        store.insert_refresh_token(RefreshToken.new(user.id, "long", 3600))

        assert store.count_expired_refresh_tokens(later) == 2
        assert store.purge_expired_refresh_tokens(later) == 2
        assert store.get_refresh_token("long") is not None
        assert store.get_refresh_token("stale") is None


class TestCategories:
    def test_defaults_seeded_once(self, store):
        store.default_categories()
        defaults = [c for c in store.categories.values() if c.is_default]
        assert len(defaults) == len(DEFAULT_CATEGORIES)

    def test_defaults_cannot_be_deleted(self, store, ledger):
        default = store.list_categories(ledger.id)[0]
        assert not store.delete_category(default.id)

    def test_same_name_allowed_in_different_ledgers(self, store, user, ledger):
        second, _ = store.create_ledger("Second", user.id)
        store.create_category(ledger.id, "Pets")
        store.create_category(second.id, "Pets")
        with pytest.raises(ConstraintViolation):
            store.create_category(ledger.id, "Pets")

    def test_usage_counts_live_expenses_only(self, store, user, ledger):
        pets = store.create_category(ledger.id, "Pets")
        expense = store.create_expense(
            ledger.id, user.id, amount=Decimal("10"), description="Food",
            expense_date=date(2024, 1, 1), category_id=pets.id,
        )
        assert store.count_expenses_for_category(pets.id) == 1
        store.soft_delete_expense(expense.id)
        assert store.count_expenses_for_category(pets.id) == 0

    def test_delete_detaches_tombstoned_expenses(self, store, user, ledger):
        pets = store.create_category(ledger.id, "Pets")
        expense = store.create_expense(
            ledger.id, user.id, amount=Decimal("10"), description="Food",
            expense_date=date(2024, 1, 1), category_id=pets.id,
        )
        store.soft_delete_expense(expense.id)

        assert store.delete_category(pets.id)
        assert store.get_category(pets.id) is None
        assert store.expenses[expense.id].category_id is None


class TestExpenses:
    def _add(self, store, ledger, user, day, **kwargs):
        return store.create_expense(
            ledger.id, user.id, amount=Decimal("1000"), description="x",
            expense_date=date(2024, 1, day), **kwargs,
        )

    def test_newest_first(self, store, ledger, user):
        for day in (3, 1, 2):
            self._add(store, ledger, user, day)
        page = store.list_expenses(ledger.id)
        assert [e.expense_date.day for e in page.items] == [3, 2, 1]

    def test_same_day_ordered_by_creation(self, store, ledger, user):
        first = self._add(store, ledger, user, 5)
        second = self._add(store, ledger, user, 5)
        store.expenses[second.id].created_at = first.created_at + timedelta(seconds=1)
        page = store.list_expenses(ledger.id)
        assert [e.id for e in page.items] == [second.id, first.id]

    def test_unknown_category_rejected(self, store, ledger, user):
        with pytest.raises(ConstraintViolation):
            self._add(store, ledger, user, 1, category_id="missing")

    def test_update_partial(self, store, ledger, user):
        expense = self._add(store, ledger, user, 1, payment_method="card")
        updated = store.update_expense(expense.id, amount=Decimal("2500.50"))
        assert updated.amount == Decimal("2500.50")
        assert updated.payment_method == "card"
        cleared = store.update_expense(expense.id, payment_method=None)
        assert cleared.payment_method is None

    def test_soft_delete_keeps_row(self, store, ledger, user):
        expense = self._add(store, ledger, user, 1)
        assert store.soft_delete_expense(expense.id)
        assert store.get_expense(expense.id) is None
        assert store.update_expense(expense.id, description="late") is None
        assert expense.id in store.expenses
        assert not store.soft_delete_expense(expense.id)


class TestConstraintViolation:
    def test_message_names_offending_fields(self):
        exc = ConstraintViolation("category name already exists", {"field": "name"})
        assert exc.message == "category name already exists"
        assert str(exc) == "category name already exists (field=name)"

    def test_detail_defaults_to_empty(self):
        exc = ConstraintViolation("user does not exist")
        assert exc.detail == {}
        assert str(exc) == "user does not exist"
