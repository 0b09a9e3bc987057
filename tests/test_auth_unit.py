"""Unit tests for the credential lifecycle and auth service.

Tests for:
- Password hashing and verification
- Token pair issuance and stateless authentication
- Single-use refresh rotation, including concurrent reuse
- Revocation on logout and password change
- Signup/login semantics
"""

import threading
from datetime import timedelta

import pytest

from famoney.service.auth import AuthService, TokenLifecycleManager
from famoney.service.errors import AuthenticationError, BadRequestError, InvalidTokenError
from famoney.service.passwords import PasswordVerifier
from famoney.service.tokens import TokenCodec
from famoney.service.users import UserService
from famoney.storage.memory import MemoryStore
from famoney.storage.models import utcnow

SECRET = "Test-Secret-Key_for-Automation-Only-987654321!"


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def passwords():
    return PasswordVerifier()


@pytest.fixture
def tokens(memory_store):
    return TokenLifecycleManager(
        memory_store,
        TokenCodec(SECRET),
        access_ttl_seconds=900,
        refresh_ttl_seconds=3600,
    )


@pytest.fixture
def auth_service(memory_store, tokens, passwords):
    return AuthService(memory_store, tokens, passwords)


@pytest.fixture
def test_user(auth_service):
    user, _ = auth_service.signup("test@example.com", "TestPassword123!", "Tester")
    return user


class TestPasswordHashing:
    def test_hash_is_not_plaintext(self, passwords):
        digest = passwords.hash("TestPassword123!")
        assert digest != "TestPassword123!"
        assert digest.startswith("$argon2id$")

    def test_same_password_produces_different_hashes(self, passwords):
        assert passwords.hash("pw") != passwords.hash("pw")

    def test_verify_accepts_correct_and_rejects_wrong(self, passwords):
        digest = passwords.hash("right")
        assert passwords.verify("right", digest) is True
        assert passwords.verify("wrong", digest) is False

    def test_verify_rejects_unusable_hash(self, passwords):
        assert passwords.verify("anything", "not-a-hash") is False
        assert passwords.verify("anything", "") is False


class TestTokenPair:
    def test_issue_persists_refresh_row(self, tokens, memory_store, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)

        row = memory_store.get_refresh_token(pair.refresh_token)
        assert row is not None
        assert row.user_id == test_user.id
        assert row.revoked_at is None
        assert row.expires_at > utcnow() + timedelta(seconds=3500)
        assert pair.expires_in == 900

    def test_authenticate_returns_subject(self, tokens, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        assert tokens.authenticate(pair.access_token) == test_user.id

    def test_refresh_token_is_not_an_access_token(self, tokens, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        with pytest.raises(InvalidTokenError):
            tokens.authenticate(pair.refresh_token)

    def test_access_token_cannot_be_rotated(self, tokens, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.access_token)

    def test_access_token_survives_revoke_all(self, tokens, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        tokens.revoke_all(test_user.id)
        # Access tokens are stateless until they expire
        assert tokens.authenticate(pair.access_token) == test_user.id


class TestRotation:
    def test_rotation_is_single_use(self, tokens, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)

        rotated = tokens.rotate_refresh_token(pair.refresh_token)
        assert rotated.refresh_token != pair.refresh_token

        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.refresh_token)

    def test_rotated_token_can_itself_be_rotated(self, tokens, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        second = tokens.rotate_refresh_token(pair.refresh_token)
        third = tokens.rotate_refresh_token(second.refresh_token)
        assert tokens.authenticate(third.access_token) == test_user.id

    def test_replay_fails_before_new_token_is_used(self, tokens, memory_store, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        rotated = tokens.rotate_refresh_token(pair.refresh_token)

        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.refresh_token)
        assert memory_store.find_valid_refresh_token(rotated.refresh_token) is not None

    def test_unknown_token_fails(self, tokens, test_user, memory_store):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        memory_store.refresh_tokens.clear()
        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.refresh_token)

    def test_expired_row_fails(self, tokens, memory_store, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        for row in memory_store.refresh_tokens.values():
            row.expires_at = utcnow() - timedelta(seconds=1)
        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.refresh_token)

    def test_deleted_owner_cannot_rotate(self, tokens, memory_store, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        memory_store.soft_delete_user(test_user.id)
        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.refresh_token)

    def test_concurrent_rotation_yields_exactly_one_success(self, tokens, test_user):
        pair = tokens.issue_token_pair(test_user.id, test_user.email)
        barrier = threading.Barrier(8)
        successes = []
        failures = []

        def attempt():
            barrier.wait()
            try:
                successes.append(tokens.rotate_refresh_token(pair.refresh_token))
            except InvalidTokenError:
                failures.append(True)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 1
        assert len(failures) == 7


class TestRevocation:
    def test_revoke_all_blocks_every_refresh_token(self, tokens, test_user):
        pairs = [tokens.issue_token_pair(test_user.id, test_user.email) for _ in range(3)]

        # three issued here plus the one from signup
        assert tokens.revoke_all(test_user.id) == 4

        for pair in pairs:
            with pytest.raises(InvalidTokenError):
                tokens.rotate_refresh_token(pair.refresh_token)

    def test_revoke_all_leaves_other_users_alone(self, tokens, auth_service, test_user):
        other, other_pair = auth_service.signup("other@example.com", "pw123456", "Other")
        tokens.issue_token_pair(test_user.id, test_user.email)

        tokens.revoke_all(test_user.id)

        rotated = tokens.rotate_refresh_token(other_pair.refresh_token)
        assert tokens.authenticate(rotated.access_token) == other.id

    def test_revoke_all_is_idempotent(self, tokens, test_user):
        tokens.revoke_all(test_user.id)
        assert tokens.revoke_all(test_user.id) == 0

    def test_purge_removes_only_expired_rows(self, tokens, memory_store, test_user):
        live = tokens.issue_token_pair(test_user.id, test_user.email)
        stale = tokens.issue_token_pair(test_user.id, test_user.email)
        memory_store.refresh_tokens[
            memory_store.get_refresh_token(stale.refresh_token).id
        ].expires_at = utcnow() - timedelta(minutes=1)

        assert tokens.purge_expired() == 1
        assert memory_store.get_refresh_token(stale.refresh_token) is None
        assert memory_store.get_refresh_token(live.refresh_token) is not None


class TestAuthService:
    def test_signup_token_authenticates_new_user(self, auth_service, tokens):
        user, pair = auth_service.signup("a@x.com", "secret1", "A")
        assert tokens.authenticate(pair.access_token) == user.id

    def test_signup_lowercases_email(self, auth_service):
        user, _ = auth_service.signup("Mixed@Example.COM", "secret1", "M")
        assert user.email == "mixed@example.com"

    def test_signup_rejects_duplicate_email_case_insensitively(self, auth_service, test_user):
        with pytest.raises(BadRequestError) as excinfo:
            auth_service.signup("TEST@example.com", "whatever", "Dup")
        assert excinfo.value.detail == {"field": "email"}

    def test_login_with_wrong_password(self, auth_service, test_user):
        with pytest.raises(AuthenticationError) as excinfo:
            auth_service.login("test@example.com", "wrong")
        assert excinfo.value.message == "Invalid email or password"

    def test_login_with_unknown_email_has_same_message(self, auth_service):
        with pytest.raises(AuthenticationError) as excinfo:
            auth_service.login("nobody@example.com", "pw")
        assert excinfo.value.message == "Invalid email or password"

    def test_login_keeps_earlier_refresh_tokens_valid(self, auth_service, tokens):
        _, signup_pair = auth_service.signup("a@x.com", "secret1", "A")
        auth_service.login("a@x.com", "secret1")

        rotated = tokens.rotate_refresh_token(signup_pair.refresh_token)
        assert rotated.access_token

    def test_deleted_user_cannot_log_in(self, auth_service, memory_store, test_user):
        memory_store.soft_delete_user(test_user.id)
        with pytest.raises(AuthenticationError):
            auth_service.login("test@example.com", "TestPassword123!")

    def test_current_user_rejects_deleted_account(self, auth_service, memory_store):
        user, pair = auth_service.signup("gone@x.com", "secret1", "Gone")
        memory_store.soft_delete_user(user.id)
        with pytest.raises(AuthenticationError):
            auth_service.current_user(pair.access_token)

    def test_refresh_returns_owner(self, auth_service):
        user, pair = auth_service.signup("r@x.com", "secret1", "R")
        refreshed_user, new_pair = auth_service.refresh(pair.refresh_token)
        assert refreshed_user.id == user.id
        assert new_pair.refresh_token != pair.refresh_token

    def test_logout_revokes_refresh_tokens(self, auth_service, tokens):
        user, pair = auth_service.signup("l@x.com", "secret1", "L")
        auth_service.logout(user.id)
        with pytest.raises(InvalidTokenError):
            auth_service.refresh(pair.refresh_token)

    def test_email_can_be_reused_after_account_deletion(self, auth_service, memory_store):
        user, _ = auth_service.signup("again@x.com", "secret1", "First")
        memory_store.soft_delete_user(user.id)
        second, _ = auth_service.signup("again@x.com", "secret1", "Second")
        assert second.id != user.id


class TestUserService:
    @pytest.fixture
    def users(self, memory_store, tokens, passwords):
        return UserService(memory_store, tokens, passwords)

    def test_change_password_revokes_refresh_tokens(self, users, auth_service, tokens):
        user, pair = auth_service.signup("p@x.com", "old-password", "P")

        users.change_password(user.id, "old-password", "new-password")

        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.refresh_token)
        auth_service.login("p@x.com", "new-password")

    def test_change_password_rejects_wrong_current(self, users, auth_service):
        user, _ = auth_service.signup("p@x.com", "old-password", "P")
        with pytest.raises(BadRequestError):
            users.change_password(user.id, "nope", "new-password")

    def test_update_profile_is_partial(self, users, test_user):
        users.update_profile(test_user.id, profile_image="https://img/1.png")
        updated = users.update_profile(test_user.id, name="Renamed")
        assert updated.name == "Renamed"
        assert updated.profile_image == "https://img/1.png"

    def test_delete_account_hides_user_and_revokes(self, users, auth_service, memory_store, tokens):
        user, pair = auth_service.signup("d@x.com", "secret1", "D")
        users.delete_account(user.id)

        assert memory_store.get_user(user.id) is None
        assert memory_store.get_user_by_email("d@x.com") is None
        with pytest.raises(InvalidTokenError):
            tokens.rotate_refresh_token(pair.refresh_token)
