import pytest

from scripts.bootstrap_root import bootstrap_root, main, validate_password


@pytest.mark.parametrize(
    "password,ok",
    [
        ("Str0ng-Passphrase", True),
        ("alllowercaseletters1", False),
        ("Short1!", False),
        ("NoDigitsButSymbols!!", True),
        ("x" * 129, False),
    ],
)
def test_validate_password(password, ok):
    assert validate_password(password) is ok


async def test_creates_root(store, hasher):
    result = await bootstrap_root(store, "Root@X.com", "Owner", "Str0ng-Passphrase", hasher=hasher)
    assert result["status"] == "created"
    root = await store.get_root_user()
    assert root.email == "root@x.com"
    assert root.role == "ROOT"
    record = await store.get_password_record(root.id)
    assert hasher.verify("Str0ng-Passphrase", record.password_hash)


async def test_second_run_reports_existing_root(store, hasher):
    first = await bootstrap_root(store, "root@x.com", "Owner", "Str0ng-Passphrase", hasher=hasher)
    second = await bootstrap_root(store, "other@x.com", "Owner", "Str0ng-Passphrase", hasher=hasher)
    assert second == {"user_id": first["user_id"], "email": "root@x.com", "status": "exists"}
    assert len(store.users) == 1


async def test_email_owned_by_regular_user(store, hasher):
    await store.create_user("jo@x.com", "Jo", "hash")
    result = await bootstrap_root(store, "jo@x.com", "Owner", "Str0ng-Passphrase", hasher=hasher)
    assert result["status"] == "conflict"
    assert await store.get_root_user() is None


async def test_dry_run_changes_nothing(store, hasher):
    result = await bootstrap_root(
        store, "root@x.com", "Owner", "Str0ng-Passphrase", dry_run=True, hasher=hasher
    )
    assert result["status"] == "dry_run"
    assert store.users == {}


def test_main_requires_email_and_strong_password(monkeypatch):
    monkeypatch.delenv("ROOT_EMAIL", raising=False)
    monkeypatch.delenv("ROOT_PASSWORD", raising=False)
    assert main(["--password", "Str0ng-Passphrase"]) == 1
    assert main(["--email", "root@x.com", "--password", "weak"]) == 1


def test_main_dry_run_against_memory_store():
    assert main(["--email", "root@x.com", "--password", "Str0ng-Passphrase", "--dry-run"]) == 0
