from __future__ import annotations

from typing import Any

from famoney.logging import get_logger
from famoney.service.auth import TokenLifecycleManager
from famoney.service.errors import BadRequestError, NotFoundError
from famoney.service.passwords import PasswordVerifier
from famoney.storage.models import User

logger = get_logger(__name__)


class UserService:
    def __init__(self, store, tokens: TokenLifecycleManager, passwords: PasswordVerifier) -> None:
        self.store = store
        self.tokens = tokens
        self.passwords = passwords

    def get_profile(self, user_id: str) -> User:
        user = self.store.get_user(user_id)
        if not user:
            raise NotFoundError("user not found")
        return user

    def update_profile(self, user_id: str, **changes: Any) -> User:
        """Apply only the fields present in ``changes`` (name, profile_image)."""
        allowed = {k: v for k, v in changes.items() if k in ("name", "profile_image")}
        user = self.store.update_user(user_id, **allowed)
        if not user:
            raise NotFoundError("user not found")
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.get_profile(user_id)
        if not self.passwords.verify(current_password, user.password_hash):
            raise BadRequestError(
                "Current password is incorrect", detail={"field": "current_password"}
            )
        self.store.set_password_hash(user_id, self.passwords.hash(new_password))
        self.tokens.revoke_all(user_id)
        logger.info("password_changed", user_id=user_id)

    def delete_account(self, user_id: str) -> None:
        if not self.store.soft_delete_user(user_id):
            raise NotFoundError("user not found")
        self.tokens.revoke_all(user_id)
        logger.info("account_deleted", user_id=user_id)
