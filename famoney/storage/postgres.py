from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from famoney.logging import get_logger
from famoney.storage.common import DEFAULT_CATEGORIES, LIVE, validate_page_request
from famoney.storage.errors import ConstraintViolation
from famoney.storage.models import (
    Category,
    Expense,
    Ledger,
    Membership,
    Page,
    RefreshToken,
    User,
    new_id,
    utcnow,
)

_UNSET = object()

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        name TEXT NOT NULL,
        profile_image TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        deleted_at TIMESTAMPTZ
    )
    """,
    f"CREATE UNIQUE INDEX IF NOT EXISTS app_user_live_email ON app_user (lower(email)) WHERE {LIVE}",
    """
    CREATE TABLE IF NOT EXISTS ledger (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT,
        currency TEXT NOT NULL,
        created_by TEXT NOT NULL REFERENCES app_user(id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        deleted_at TIMESTAMPTZ
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ledger_member (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES app_user(id),
        ledger_id TEXT NOT NULL REFERENCES ledger(id),
        role TEXT NOT NULL,
        joined_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        invited_by TEXT REFERENCES app_user(id),
        UNIQUE (user_id, ledger_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_token (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES app_user(id),
        token TEXT NOT NULL UNIQUE,
        expires_at TIMESTAMPTZ NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        revoked_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS refresh_token_user ON refresh_token (user_id)",
    """
    CREATE TABLE IF NOT EXISTS category (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        color TEXT NOT NULL,
        icon TEXT,
        is_default BOOLEAN NOT NULL DEFAULT FALSE,
        ledger_id TEXT REFERENCES ledger(id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS category_ledger_name ON category (ledger_id, name) WHERE ledger_id IS NOT NULL",
    """
    CREATE TABLE IF NOT EXISTS expense (
        id TEXT PRIMARY KEY,
        ledger_id TEXT NOT NULL REFERENCES ledger(id),
        category_id TEXT REFERENCES category(id),
        amount NUMERIC(15, 2) NOT NULL,
        description TEXT NOT NULL,
        expense_date DATE NOT NULL,
        payment_method TEXT,
        created_by TEXT NOT NULL REFERENCES app_user(id),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        deleted_at TIMESTAMPTZ
    )
    """,
    "CREATE INDEX IF NOT EXISTS expense_ledger_date ON expense (ledger_id, expense_date DESC)",
)


def _user_from_row(row: dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        email=row["email"],
        password_hash=row["password_hash"],
        name=row["name"],
        profile_image=row.get("profile_image"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row.get("deleted_at"),
    )


def _ledger_from_row(row: dict[str, Any]) -> Ledger:
    return Ledger(
        id=str(row["id"]),
        name=row["name"],
        created_by=str(row["created_by"]),
        description=row.get("description"),
        currency=row["currency"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row.get("deleted_at"),
    )


def _membership_from_row(row: dict[str, Any]) -> Membership:
    invited_by = row.get("invited_by")
    return Membership(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        ledger_id=str(row["ledger_id"]),
        role=row["role"],
        joined_at=row["joined_at"],
        invited_by=str(invited_by) if invited_by else None,
    )


def _refresh_token_from_row(row: dict[str, Any]) -> RefreshToken:
    return RefreshToken(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        token=row["token"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
        revoked_at=row.get("revoked_at"),
    )


def _category_from_row(row: dict[str, Any]) -> Category:
    ledger_id = row.get("ledger_id")
    return Category(
        id=str(row["id"]),
        name=row["name"],
        ledger_id=str(ledger_id) if ledger_id else None,
        color=row["color"],
        icon=row.get("icon"),
        is_default=bool(row.get("is_default")),
        created_at=row["created_at"],
    )


def _expense_from_row(row: dict[str, Any]) -> Expense:
    category_id = row.get("category_id")
    return Expense(
        id=str(row["id"]),
        ledger_id=str(row["ledger_id"]),
        amount=Decimal(row["amount"]),
        description=row["description"],
        expense_date=row["expense_date"],
        created_by=str(row["created_by"]),
        category_id=str(category_id) if category_id else None,
        payment_method=row.get("payment_method"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        deleted_at=row.get("deleted_at"),
    )


class PostgresStore:
    """Postgres-backed store; every current-state query filters tombstones."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()
        self._ensure_default_categories()

    def _connect(self):
        return self.pool.connection()

    def close(self) -> None:
        self.pool.close()

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def _ensure_default_categories(self) -> None:
        with self._connect() as conn:
            for name, color, icon in DEFAULT_CATEGORIES:
                conn.execute(
                    """
                    INSERT INTO category (id, name, color, icon, is_default)
                    SELECT %s, %s, %s, %s, TRUE
                    WHERE NOT EXISTS (
                        SELECT 1 FROM category WHERE is_default AND name = %s
                    )
                    """,
                    (new_id(), name, color, icon, name),
                )

    # users
    def create_user(
        self,
        email: str,
        password_hash: str,
        name: str,
        *,
        profile_image: Optional[str] = None,
    ) -> User:
        user = User(
            id=new_id(),
            email=email.strip().lower(),
            password_hash=password_hash,
            name=name,
            profile_image=profile_image,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_user (id, email, password_hash, name, profile_image, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        user.id,
                        user.email,
                        user.password_hash,
                        user.name,
                        user.profile_image,
                        user.created_at,
                        user.updated_at,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM app_user WHERE id = %s AND {LIVE}", (user_id,)
            ).fetchone()
        return _user_from_row(row) if row else None

    def get_users(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ids = sorted(set(user_ids))
        if not ids:
            return {}
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT * FROM app_user WHERE id = ANY(%s) AND {LIVE}", (ids,)
            ).fetchall()
        return {str(row["id"]): _user_from_row(row) for row in rows}

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM app_user WHERE lower(email) = %s AND {LIVE}",
                (email.strip().lower(),),
            ).fetchone()
        return _user_from_row(row) if row else None

    def update_user(
        self, user_id: str, *, name: Optional[str] = None, profile_image=_UNSET
    ) -> Optional[User]:
        assignments = ["updated_at = %s"]
        params: list[Any] = [utcnow()]
        if name is not None:
            assignments.append("name = %s")
            params.append(name)
        if profile_image is not _UNSET:
            assignments.append("profile_image = %s")
            params.append(profile_image)
        params.append(user_id)
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE app_user SET {', '.join(assignments)} WHERE id = %s AND {LIVE} RETURNING *",
                params,
            ).fetchone()
        return _user_from_row(row) if row else None

    def set_password_hash(self, user_id: str, password_hash: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                f"UPDATE app_user SET password_hash = %s, updated_at = %s WHERE id = %s AND {LIVE}",
                (password_hash, utcnow(), user_id),
            )
            return result.rowcount > 0

    def soft_delete_user(self, user_id: str, now: Optional[datetime] = None) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                f"UPDATE app_user SET deleted_at = %s WHERE id = %s AND {LIVE}",
                (now or utcnow(), user_id),
            )
            return result.rowcount > 0

    # ledgers
    def create_ledger(
        self,
        name: str,
        created_by: str,
        *,
        description: Optional[str] = None,
        currency: str = "KRW",
    ) -> Tuple[Ledger, Membership]:
        """Insert the ledger and its OWNER membership in one transaction."""
        ledger = Ledger(
            id=new_id(),
            name=name,
            created_by=created_by,
            description=description,
            currency=currency,
        )
        owner = Membership(
            id=new_id(),
            user_id=created_by,
            ledger_id=ledger.id,
            role="OWNER",
            joined_at=ledger.created_at,
        )
        try:
            with self._connect() as conn:
                with conn.transaction():
                    conn.execute(
                        """
                        INSERT INTO ledger (id, name, description, currency, created_by, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        """,
                        (
                            ledger.id,
                            ledger.name,
                            ledger.description,
                            ledger.currency,
                            ledger.created_by,
                            ledger.created_at,
                            ledger.updated_at,
                        ),
                    )
                    conn.execute(
                        """
                        INSERT INTO ledger_member (id, user_id, ledger_id, role, joined_at)
                        VALUES (%s, %s, %s, %s, %s)
                        """,
                        (owner.id, owner.user_id, owner.ledger_id, owner.role, owner.joined_at),
                    )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"user_id": created_by})
        return ledger, owner

    def get_ledger(self, ledger_id: str) -> Optional[Ledger]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM ledger WHERE id = %s AND {LIVE}", (ledger_id,)
            ).fetchone()
        return _ledger_from_row(row) if row else None

    def list_ledgers_for_user(self, user_id: str) -> List[Ledger]:
        with self._connect() as conn:
            rows = conn.execute(
                f"""
                SELECT l.* FROM ledger l
                JOIN ledger_member m ON m.ledger_id = l.id
                WHERE m.user_id = %s AND l.{LIVE}
                ORDER BY l.created_at
                """,
                (user_id,),
            ).fetchall()
        return [_ledger_from_row(row) for row in rows]

    def update_ledger(
        self,
        ledger_id: str,
        *,
        name: Optional[str] = None,
        description=_UNSET,
    ) -> Optional[Ledger]:
        assignments = ["updated_at = %s"]
        params: list[Any] = [utcnow()]
        if name is not None:
            assignments.append("name = %s")
            params.append(name)
        if description is not _UNSET:
            assignments.append("description = %s")
            params.append(description)
        params.append(ledger_id)
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE ledger SET {', '.join(assignments)} WHERE id = %s AND {LIVE} RETURNING *",
                params,
            ).fetchone()
        return _ledger_from_row(row) if row else None

    def soft_delete_ledger(self, ledger_id: str, now: Optional[datetime] = None) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                f"UPDATE ledger SET deleted_at = %s WHERE id = %s AND {LIVE}",
                (now or utcnow(), ledger_id),
            )
            return result.rowcount > 0

    # memberships
    def get_membership(self, user_id: str, ledger_id: str) -> Optional[Membership]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM ledger_member WHERE user_id = %s AND ledger_id = %s",
                (user_id, ledger_id),
            ).fetchone()
        return _membership_from_row(row) if row else None

    def get_membership_by_id(self, membership_id: str) -> Optional[Membership]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM ledger_member WHERE id = %s", (membership_id,)
            ).fetchone()
        return _membership_from_row(row) if row else None

    def list_memberships(self, ledger_id: str) -> List[Membership]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM ledger_member WHERE ledger_id = %s ORDER BY joined_at",
                (ledger_id,),
            ).fetchall()
        return [_membership_from_row(row) for row in rows]

    def count_memberships(self, ledger_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT count(*) AS total FROM ledger_member WHERE ledger_id = %s",
                (ledger_id,),
            ).fetchone()
        return int(row["total"]) if row else 0

    def add_membership(
        self,
        user_id: str,
        ledger_id: str,
        role: str,
        *,
        invited_by: Optional[str] = None,
    ) -> Membership:
        membership = Membership(
            id=new_id(),
            user_id=user_id,
            ledger_id=ledger_id,
            role=role,
            invited_by=invited_by,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO ledger_member (id, user_id, ledger_id, role, joined_at, invited_by)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        membership.id,
                        membership.user_id,
                        membership.ledger_id,
                        membership.role,
                        membership.joined_at,
                        membership.invited_by,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation(
                "membership already exists", {"user_id": user_id, "ledger_id": ledger_id}
            )
        return membership

    def update_membership_role(self, membership_id: str, role: str) -> Optional[Membership]:
        with self._connect() as conn:
            row = conn.execute(
                "UPDATE ledger_member SET role = %s WHERE id = %s RETURNING *",
                (role, membership_id),
            ).fetchone()
        return _membership_from_row(row) if row else None

    def delete_membership(self, membership_id: str) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM ledger_member WHERE id = %s", (membership_id,)
            )
            return result.rowcount > 0

    # refresh tokens
    def insert_refresh_token(self, record: RefreshToken) -> RefreshToken:
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO refresh_token (id, user_id, token, expires_at, created_at, revoked_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    """,
                    (
                        record.id,
                        record.user_id,
                        record.token,
                        record.expires_at,
                        record.created_at,
                        record.revoked_at,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("refresh token already exists", {"field": "token"})
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"user_id": record.user_id})
        return record

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_token WHERE token = %s", (token,)
            ).fetchone()
        return _refresh_token_from_row(row) if row else None

    def find_valid_refresh_token(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM refresh_token
                WHERE token = %s AND revoked_at IS NULL AND expires_at > %s
                """,
                (token, now or utcnow()),
            ).fetchone()
        return _refresh_token_from_row(row) if row else None

    def revoke_refresh_token(self, record_id: str, now: Optional[datetime] = None) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE refresh_token SET revoked_at = %s WHERE id = %s AND revoked_at IS NULL",
                (now or utcnow(), record_id),
            )
            return result.rowcount > 0

    def consume_refresh_token(
        self, token: str, now: Optional[datetime] = None
    ) -> Optional[RefreshToken]:
        """Compare-and-set revocation; only one concurrent caller gets the row back."""
        now = now or utcnow()
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE refresh_token SET revoked_at = %s
                WHERE token = %s AND revoked_at IS NULL AND expires_at > %s
                RETURNING *
                """,
                (now, token, now),
            ).fetchone()
        return _refresh_token_from_row(row) if row else None

    def revoke_user_refresh_tokens(self, user_id: str, now: Optional[datetime] = None) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "UPDATE refresh_token SET revoked_at = %s WHERE user_id = %s AND revoked_at IS NULL",
                (now or utcnow(), user_id),
            )
            return result.rowcount

    def count_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT count(*) AS total FROM refresh_token WHERE expires_at <= %s",
                (now or utcnow(),),
            ).fetchone()
        return int(row["total"]) if row else 0

    def purge_expired_refresh_tokens(self, now: Optional[datetime] = None) -> int:
        with self._connect() as conn:
            result = conn.execute(
                "DELETE FROM refresh_token WHERE expires_at <= %s", (now or utcnow(),)
            )
            purged = result.rowcount
        if purged:
            self.logger.info("refresh_tokens_purged", count=purged)
        return purged

    # categories
    def list_categories(self, ledger_id: str) -> List[Category]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM category
                WHERE is_default OR ledger_id = %s
                ORDER BY is_default DESC, name
                """,
                (ledger_id,),
            ).fetchall()
        return [_category_from_row(row) for row in rows]

    def get_category(self, category_id: str) -> Optional[Category]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM category WHERE id = %s", (category_id,)
            ).fetchone()
        return _category_from_row(row) if row else None

    def get_categories(self, category_ids: Iterable[str]) -> Dict[str, Category]:
        ids = sorted(set(category_ids))
        if not ids:
            return {}
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM category WHERE id = ANY(%s)", (ids,)
            ).fetchall()
        return {str(row["id"]): _category_from_row(row) for row in rows}

    def create_category(
        self,
        ledger_id: str,
        name: str,
        *,
        color: str = "#808080",
        icon: Optional[str] = None,
    ) -> Category:
        category = Category(
            id=new_id(), name=name, ledger_id=ledger_id, color=color, icon=icon
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO category (id, name, color, icon, is_default, ledger_id, created_at)
                    VALUES (%s, %s, %s, %s, FALSE, %s, %s)
                    """,
                    (
                        category.id,
                        category.name,
                        category.color,
                        category.icon,
                        category.ledger_id,
                        category.created_at,
                    ),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("category name already exists", {"field": "name"})
        return category

    def delete_category(self, category_id: str) -> bool:
        """Delete a custom category, detaching tombstoned expenses first.

        Soft-deleted expenses keep their row, so their foreign key has to be
        cleared before the category row can go.
        """
        try:
            with self._connect() as conn:
                with conn.transaction():
                    conn.execute(
                        f"""
                        UPDATE expense SET category_id = NULL
                        WHERE category_id = %s AND NOT ({LIVE})
                          AND EXISTS (SELECT 1 FROM category WHERE id = %s AND NOT is_default)
                        """,
                        (category_id, category_id),
                    )
                    result = conn.execute(
                        "DELETE FROM category WHERE id = %s AND NOT is_default",
                        (category_id,),
                    )
                    return result.rowcount > 0
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "category is used by an expense", {"category_id": category_id}
            )

    def count_expenses_for_category(self, category_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT count(*) AS total FROM expense WHERE category_id = %s AND {LIVE}",
                (category_id,),
            ).fetchone()
        return int(row["total"]) if row else 0

    # expenses
    def create_expense(
        self,
        ledger_id: str,
        created_by: str,
        *,
        amount: Decimal,
        description: str,
        expense_date: date,
        category_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Expense:
        expense = Expense(
            id=new_id(),
            ledger_id=ledger_id,
            amount=amount,
            description=description,
            expense_date=expense_date,
            created_by=created_by,
            category_id=category_id,
            payment_method=payment_method,
        )
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO expense (id, ledger_id, category_id, amount, description, expense_date,
                                         payment_method, created_by, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        expense.id,
                        expense.ledger_id,
                        expense.category_id,
                        expense.amount,
                        expense.description,
                        expense.expense_date,
                        expense.payment_method,
                        expense.created_by,
                        expense.created_at,
                        expense.updated_at,
                    ),
                )
        except errors.ForeignKeyViolation:
            raise ConstraintViolation(
                "expense references a missing row", {"ledger_id": ledger_id}
            )
        return expense

    def get_expense(self, expense_id: str) -> Optional[Expense]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT * FROM expense WHERE id = %s AND {LIVE}", (expense_id,)
            ).fetchone()
        return _expense_from_row(row) if row else None

    def list_expenses(
        self,
        ledger_id: str,
        *,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category_id: Optional[str] = None,
        page: int = 0,
        size: int = 20,
        max_size: int = 100,
    ) -> Page[Expense]:
        validate_page_request(page, size, max_size=max_size)
        clauses = ["ledger_id = %s", LIVE]
        params: list[Any] = [ledger_id]
        if start_date is not None:
            clauses.append("expense_date >= %s")
            params.append(start_date)
        if end_date is not None:
            clauses.append("expense_date <= %s")
            params.append(end_date)
        if category_id is not None:
            clauses.append("category_id = %s")
            params.append(category_id)
        where = " AND ".join(clauses)
        with self._connect() as conn:
            total_row = conn.execute(
                f"SELECT count(*) AS total FROM expense WHERE {where}", params
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT * FROM expense WHERE {where}
                ORDER BY expense_date DESC, created_at DESC
                LIMIT %s OFFSET %s
                """,
                [*params, size, page * size],
            ).fetchall()
        total = int(total_row["total"]) if total_row else 0
        return Page(
            items=[_expense_from_row(row) for row in rows],
            page=page,
            size=size,
            total=total,
        )

    def update_expense(
        self,
        expense_id: str,
        *,
        amount: Optional[Decimal] = None,
        description: Optional[str] = None,
        expense_date: Optional[date] = None,
        category_id=_UNSET,
        payment_method=_UNSET,
    ) -> Optional[Expense]:
        assignments = ["updated_at = %s"]
        params: list[Any] = [utcnow()]
        for column, value in (
            ("amount", amount),
            ("description", description),
            ("expense_date", expense_date),
        ):
            if value is not None:
                assignments.append(f"{column} = %s")
                params.append(value)
        for column, value in (
            ("category_id", category_id),
            ("payment_method", payment_method),
        ):
            if value is not _UNSET:
                assignments.append(f"{column} = %s")
                params.append(value)
        params.append(expense_id)
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE expense SET {', '.join(assignments)} WHERE id = %s AND {LIVE} RETURNING *",
                params,
            ).fetchone()
        return _expense_from_row(row) if row else None

    def soft_delete_expense(self, expense_id: str, now: Optional[datetime] = None) -> bool:
        with self._connect() as conn:
            result = conn.execute(
                f"UPDATE expense SET deleted_at = %s WHERE id = %s AND {LIVE}",
                (now or utcnow(), expense_id),
            )
            return result.rowcount > 0
