from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Tuple

from famoney.logging import get_logger
from famoney.service.errors import AuthenticationError, BadRequestError, InvalidTokenError
from famoney.service.passwords import PasswordVerifier
from famoney.service.tokens import ACCESS, REFRESH, TokenCodec
from famoney.storage.models import RefreshToken, User, new_id, utcnow

logger = get_logger(__name__)


class AuthStore(Protocol):
    def create_user(
        self, email: str, password_hash: str, name: str, *, profile_image: Optional[str] = None
    ) -> User:
        ...

    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def get_user_by_email(self, email: str) -> Optional[User]:
        ...

    def insert_refresh_token(self, record: RefreshToken) -> RefreshToken:
        ...

    def consume_refresh_token(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[RefreshToken]:
        ...

    def revoke_user_refresh_tokens(self, user_id: str, now: Optional[datetime] = None) -> int:
        ...

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        ...


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    expires_in: int
    token_type: str = "Bearer"


class TokenLifecycleManager:
    """Issues, validates, rotates and revokes credentials.

    Access tokens are self-contained and never checked against the store, so a
    logout leaves already-issued access tokens usable until they expire.
    Refresh tokens are single use: rotation consumes the stored row with a
    compare-and-set, so a replayed or concurrently reused refresh token fails.
    """

    def __init__(
        self,
        store: AuthStore,
        codec: TokenCodec,
        *,
        access_ttl_seconds: int,
        refresh_ttl_seconds: int,
    ) -> None:
        self.store = store
        self.codec = codec
        self.access_ttl_seconds = access_ttl_seconds
        self.refresh_ttl_seconds = refresh_ttl_seconds
        self.logger = logger

    def issue_token_pair(self, user_id: str, email: str) -> TokenPair:
        access_token = self.codec.issue(
            {"sub": user_id, "type": ACCESS, "email": email}, self.access_ttl_seconds
        )
        refresh_token = self.codec.issue(
            {"sub": user_id, "type": REFRESH, "jti": new_id()}, self.refresh_ttl_seconds
        )
        now = utcnow()
        self.store.insert_refresh_token(
            RefreshToken(
                id=new_id(),
                user_id=user_id,
                token=refresh_token,
                expires_at=now + timedelta(seconds=self.refresh_ttl_seconds),
                created_at=now,
            )
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.access_ttl_seconds,
        )

    def authenticate(self, access_token: str) -> str:
        claims = self.codec.parse(access_token)
        if claims.get("type") != ACCESS:
            raise InvalidTokenError()
        return str(claims["sub"])

    def rotate_refresh_token(self, token: str) -> TokenPair:
        claims = self.codec.parse(token)
        if claims.get("type") != REFRESH:
            raise InvalidTokenError()
        consumed = self.store.consume_refresh_token(token, utcnow())
        # Not found, revoked and expired all collapse into the same failure
        if consumed is None:
            self.logger.warning("refresh_token_rejected", user_id=claims.get("sub"))
            raise InvalidTokenError()
        if consumed.user_id != claims.get("sub"):
            raise InvalidTokenError()
        user = self.store.get_user(consumed.user_id)
        if not user:
            raise InvalidTokenError()
        pair = self.issue_token_pair(user.id, user.email)
        self.logger.info("refresh_token_rotated", user_id=user.id)
        return pair

    def revoke_all(self, user_id: str) -> int:
        revoked = self.store.revoke_user_refresh_tokens(user_id, utcnow())
        self.logger.info("refresh_tokens_revoked", user_id=user_id, count=revoked)
        return revoked

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        return self.store.purge_expired_refresh_tokens(now or utcnow())


class AuthService:
    """Signup, login, refresh and logout on top of the token lifecycle."""

    def __init__(
        self,
        store: AuthStore,
        tokens: TokenLifecycleManager,
        passwords: PasswordVerifier,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.passwords = passwords
        self.logger = logger

    def signup(self, email: str, password: str, name: str) -> Tuple[User, TokenPair]:
        normalized = email.strip().lower()
        if self.store.get_user_by_email(normalized):
            raise BadRequestError(
                "Email already registered", detail={"field": "email"}
            )
        user = self.store.create_user(normalized, self.passwords.hash(password), name)
        self.logger.info("user_signed_up", user_id=user.id)
        return user, self.tokens.issue_token_pair(user.id, user.email)

    def login(self, email: str, password: str) -> Tuple[User, TokenPair]:
        user = self.store.get_user_by_email(email.strip().lower())
        # Same failure whether the account is missing or the password is wrong
        if not user or not self.passwords.verify(password, user.password_hash):
            self.logger.warning("login_failed")
            raise AuthenticationError("Invalid email or password")
        self.logger.info("user_logged_in", user_id=user.id)
        return user, self.tokens.issue_token_pair(user.id, user.email)

    def refresh(self, refresh_token: str) -> Tuple[User, TokenPair]:
        pair = self.tokens.rotate_refresh_token(refresh_token)
        user = self.store.get_user(self.tokens.authenticate(pair.access_token))
        if not user:
            raise InvalidTokenError()
        return user, pair

    def logout(self, user_id: str) -> int:
        return self.tokens.revoke_all(user_id)

    def current_user(self, access_token: str) -> User:
        user = self.store.get_user(self.tokens.authenticate(access_token))
        if not user:
            raise AuthenticationError("account is no longer active")
        return user
