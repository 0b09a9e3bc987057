from __future__ import annotations

import asyncio
import threading
from typing import Optional
from urllib.parse import urlparse, urlunparse

from famoney.config import Settings, get_settings, reset_settings_cache
from famoney.logging import get_logger
from famoney.service.auth import AuthService, TokenLifecycleManager
from famoney.service.categories import CategoryService
from famoney.service.expenses import ExpenseService
from famoney.service.ledgers import LedgerService
from famoney.service.members import MemberService
from famoney.service.membership import LedgerAccess, MembershipResolver
from famoney.service.passwords import PasswordVerifier
from famoney.service.tokens import TokenCodec
from famoney.service.users import UserService
from famoney.storage.memory import MemoryStore
from famoney.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a connection URL before logging it.

    Example: postgresql://app:hunter2@db:5432/famoney -> postgresql://app:***@db:5432/famoney
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
    except ValueError:
        return "***url_parse_error***"
    if not parsed.password:
        return url
    netloc = parsed.netloc.replace(f":{parsed.password}@", ":***@", 1)
    return urlunparse(parsed._replace(netloc=netloc))


class Runtime:
    """Holds the service instances shared by every request.

    Built once per process from ``Settings``; request handlers receive it
    through ``get_runtime`` instead of constructing collaborators themselves.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database_url=_mask_url_password(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)

        self.passwords = PasswordVerifier()
        self.tokens = TokenLifecycleManager(
            self.store,
            TokenCodec(self.settings.jwt_secret),
            access_ttl_seconds=self.settings.access_token_ttl_seconds,
            refresh_ttl_seconds=self.settings.refresh_token_ttl_seconds,
        )
        self.resolver = MembershipResolver(self.store)
        self.access = LedgerAccess(self.store, self.resolver)

        self.auth = AuthService(self.store, self.tokens, self.passwords)
        self.users = UserService(self.store, self.tokens, self.passwords)
        self.ledgers = LedgerService(
            self.store, self.access, default_currency=self.settings.default_currency
        )
        self.members = MemberService(self.store, self.access)
        self.categories = CategoryService(self.store, self.access)
        self.expenses = ExpenseService(
            self.store,
            self.access,
            default_page_size=self.settings.default_page_size,
            max_page_size=self.settings.max_page_size,
        )
        logger.info("runtime_initialized", store_type=store_type)

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if callable(close):
            close()


async def sweep_refresh_tokens(runtime: Runtime, interval_seconds: int) -> None:
    """Periodically purge refresh tokens past expiry until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            purged = await asyncio.to_thread(runtime.tokens.purge_expired)
        except Exception as exc:
            # Hygiene only; the next tick retries
            logger.warning("refresh_token_sweep_failed", error=str(exc))
            continue
        logger.info("refresh_token_sweep_completed", purged=purged)


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - first check without the lock (fast path once built)
    - second check under the lock so only one thread builds it
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""

    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime(settings)
        return runtime
