from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from communityhub.logging import get_logger
from communityhub.storage.errors import ConstraintViolation
from communityhub.storage.models import User, UserCredential

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS app_user (
        id UUID PRIMARY KEY,
        email TEXT NOT NULL,
        fullname TEXT NOT NULL,
        role TEXT NOT NULL DEFAULT 'USER' CHECK (role IN ('USER', 'ADMIN', 'ROOT')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ
    )
    """,
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_email_key ON app_user (lower(email))",
    # At most one ROOT row
    "CREATE UNIQUE INDEX IF NOT EXISTS app_user_single_root ON app_user (role) WHERE role = 'ROOT'",
    """
    CREATE TABLE IF NOT EXISTS user_auth_credential (
        user_id UUID PRIMARY KEY REFERENCES app_user(id) ON DELETE CASCADE,
        password_hash TEXT NOT NULL,
        password_algo TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)


def _row_to_user(row: dict[str, Any]) -> User:
    return User(
        id=str(row["id"]),
        email=row["email"],
        fullname=row["fullname"],
        role=row.get("role", "USER"),
        created_at=row.get("created_at") or datetime.now(timezone.utc),
        updated_at=row.get("updated_at"),
    )


def _unique_violation(exc: errors.UniqueViolation) -> ConstraintViolation:
    constraint = getattr(exc.diag, "constraint_name", None)
    if constraint == "app_user_single_root":
        return ConstraintViolation("root user already exists", {"field": "role"})
    return ConstraintViolation("email already exists", {"field": "email"})


class PostgresStore:
    """Postgres-backed credential store on an async connection pool."""

    def __init__(self, dsn: str, *, min_size: int = 2, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = AsyncConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
            open=False,
        )

    async def open(self) -> None:
        """Open the pool and create the user tables if they are missing."""
        await self.pool.open(wait=True)
        async with self.pool.connection() as conn:
            for statement in _SCHEMA:
                await conn.execute(statement)
        self.logger.info("postgres_store_ready")

    async def close(self) -> None:
        await self.pool.close()

    async def create_user(
        self,
        email: str,
        fullname: str,
        password_hash: str,
        *,
        role: str = "USER",
        password_algo: str = "argon2id",
    ) -> User:
        user_id = str(uuid.uuid4())
        normalized = email.strip().lower()
        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    cur = await conn.execute(
                        """
                        INSERT INTO app_user (id, email, fullname, role)
                        VALUES (%s, %s, %s, %s)
                        RETURNING *
                        """,
                        (user_id, normalized, fullname, role),
                    )
                    row = await cur.fetchone()
                    await conn.execute(
                        """
                        INSERT INTO user_auth_credential (user_id, password_hash, password_algo)
                        VALUES (%s, %s, %s)
                        """,
                        (user_id, password_hash, password_algo),
                    )
        except errors.UniqueViolation as exc:
            raise _unique_violation(exc) from exc
        return _row_to_user(row)

    async def get_user_by_email(self, email: str) -> Optional[User]:
        async with self.pool.connection() as conn:
            cur = await conn.execute(
                "SELECT * FROM app_user WHERE lower(email) = %s",
                (email.strip().lower(),),
            )
            row = await cur.fetchone()
        return _row_to_user(row) if row else None

    async def get_user(self, user_id: str) -> Optional[User]:
        try:
            uuid.UUID(str(user_id))
        except ValueError:
            return None
        async with self.pool.connection() as conn:
            cur = await conn.execute("SELECT * FROM app_user WHERE id = %s", (user_id,))
            row = await cur.fetchone()
        return _row_to_user(row) if row else None

    async def get_root_user(self) -> Optional[User]:
        async with self.pool.connection() as conn:
            cur = await conn.execute("SELECT * FROM app_user WHERE role = 'ROOT'")
            row = await cur.fetchone()
        return _row_to_user(row) if row else None

    async def list_users(self, limit: int = 100) -> List[User]:
        async with self.pool.connection() as conn:
            cur = await conn.execute(
                "SELECT * FROM app_user ORDER BY created_at DESC LIMIT %s", (limit,)
            )
            rows = await cur.fetchall()
        return [_row_to_user(row) for row in rows]

    async def update_user_role(self, user_id: str, role: str) -> Optional[User]:
        try:
            async with self.pool.connection() as conn:
                cur = await conn.execute(
                    "UPDATE app_user SET role = %s, updated_at = now() WHERE id = %s RETURNING *",
                    (role, user_id),
                )
                row = await cur.fetchone()
        except errors.UniqueViolation as exc:
            raise _unique_violation(exc) from exc
        return _row_to_user(row) if row else None

    async def save_password(
        self, user_id: str, password_hash: str, password_algo: str = "argon2id"
    ) -> None:
        try:
            async with self.pool.connection() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO user_auth_credential (user_id, password_hash, password_algo, updated_at)
                        VALUES (%s, %s, %s, now())
                        ON CONFLICT (user_id) DO UPDATE
                        SET password_hash = EXCLUDED.password_hash,
                            password_algo = EXCLUDED.password_algo,
                            updated_at = now()
                        """,
                        (user_id, password_hash, password_algo),
                    )
                    await conn.execute(
                        "UPDATE app_user SET updated_at = now() WHERE id = %s", (user_id,)
                    )
        except errors.ForeignKeyViolation as exc:
            raise ConstraintViolation(
                "user not found for credentials", {"user_id": user_id}
            ) from exc

    async def get_password_record(self, user_id: str) -> Optional[UserCredential]:
        async with self.pool.connection() as conn:
            cur = await conn.execute(
                "SELECT * FROM user_auth_credential WHERE user_id = %s", (user_id,)
            )
            row = await cur.fetchone()
        if not row:
            return None
        return UserCredential(
            user_id=str(row["user_id"]),
            password_hash=row["password_hash"],
            password_algo=row["password_algo"],
            updated_at=row["updated_at"],
        )
