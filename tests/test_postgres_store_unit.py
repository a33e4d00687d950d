import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from psycopg import errors

from communityhub.storage.errors import ConstraintViolation
from communityhub.storage.postgres import PostgresStore


class FakeCursor:
    def __init__(self, rows):
        self.rows = rows

    async def fetchone(self):
        return self.rows[0] if self.rows else None

    async def fetchall(self):
        return list(self.rows)


class FakeConnection:
    def __init__(self, results, raise_on=None):
        self.results = list(results)
        self.raise_on = raise_on
        self.statements = []

    async def execute(self, sql, params=None):
        self.statements.append((" ".join(sql.split()), params))
        if self.raise_on and self.raise_on[0] in sql:
            raise self.raise_on[1]
        rows = self.results.pop(0) if self.results else []
        return FakeCursor(rows)

    @asynccontextmanager
    async def transaction(self):
        yield


class FakePool:
    def __init__(self, conn):
        self.conn = conn

    @asynccontextmanager
    async def connection(self):
        yield self.conn


class _RootViolation(errors.UniqueViolation):
    diag = SimpleNamespace(constraint_name="app_user_single_root")


def _store(conn) -> PostgresStore:
    store: PostgresStore = PostgresStore.__new__(PostgresStore)
    store.pool = FakePool(conn)
    store.logger = SimpleNamespace(info=lambda *a, **k: None)
    return store


def _user_row(**overrides):
    row = {
        "id": uuid.uuid4(),
        "email": "jo@x.com",
        "fullname": "Jo",
        "role": "USER",
        "created_at": datetime(2024, 1, 1, tzinfo=timezone.utc),
        "updated_at": None,
    }
    row.update(overrides)
    return row


async def test_create_user_normalizes_email_and_stores_credential():
    row = _user_row()
    conn = FakeConnection([[row], []])
    user = await _store(conn).create_user(" Jo@X.com ", "Jo", "hash", password_algo="argon2id")

    assert user.id == str(row["id"])
    insert_user, insert_cred = conn.statements
    assert insert_user[0].startswith("INSERT INTO app_user")
    assert insert_user[1][1] == "jo@x.com"
    assert insert_cred[0].startswith("INSERT INTO user_auth_credential")
    assert insert_cred[1][1:] == ("hash", "argon2id")


async def test_duplicate_email_maps_to_constraint_violation():
    conn = FakeConnection([], raise_on=("INSERT INTO app_user", errors.UniqueViolation("dup")))
    with pytest.raises(ConstraintViolation) as excinfo:
        await _store(conn).create_user("jo@x.com", "Jo", "hash")
    assert excinfo.value.detail == {"field": "email"}


async def test_second_root_maps_to_role_violation():
    conn = FakeConnection([], raise_on=("UPDATE app_user", _RootViolation("dup root")))
    with pytest.raises(ConstraintViolation) as excinfo:
        await _store(conn).update_user_role(str(uuid.uuid4()), "ROOT")
    assert excinfo.value.detail == {"field": "role"}


async def test_get_user_rejects_non_uuid_without_query():
    conn = FakeConnection([])
    assert await _store(conn).get_user("not-a-uuid") is None
    assert conn.statements == []


async def test_get_user_by_email_lowercases():
    conn = FakeConnection([[_user_row()]])
    user = await _store(conn).get_user_by_email("JO@X.COM")
    assert user.email == "jo@x.com"
    assert conn.statements[0][1] == ("jo@x.com",)


async def test_update_role_missing_user():
    conn = FakeConnection([[]])
    assert await _store(conn).update_user_role(str(uuid.uuid4()), "ADMIN") is None


async def test_save_password_for_unknown_user():
    conn = FakeConnection(
        [], raise_on=("INSERT INTO user_auth_credential", errors.ForeignKeyViolation("fk"))
    )
    with pytest.raises(ConstraintViolation):
        await _store(conn).save_password(str(uuid.uuid4()), "hash")


async def test_password_record_round_trip():
    user_id = uuid.uuid4()
    updated = datetime(2024, 2, 1, tzinfo=timezone.utc)
    conn = FakeConnection(
        [[{"user_id": user_id, "password_hash": "h", "password_algo": "argon2id", "updated_at": updated}]]
    )
    record = await _store(conn).get_password_record(str(user_id))
    assert record.user_id == str(user_id)
    assert record.password_hash == "h"
    assert record.updated_at == updated


async def test_list_users_passes_limit():
    conn = FakeConnection([[_user_row(), _user_row(email="b@x.com")]])
    users = await _store(conn).list_users(limit=5)
    assert [u.email for u in users] == ["jo@x.com", "b@x.com"]
    assert conn.statements[0][1] == (5,)
