#!/usr/bin/env python3
"""Provision the single ROOT user.

ROOT cannot be created or assigned through the API; this script is the only
way to create it. Running it again reports the existing ROOT user and changes
nothing.

Usage:
    ROOT_EMAIL=root@example.com ROOT_PASSWORD='long passphrase' python scripts/bootstrap_root.py
    python scripts/bootstrap_root.py --email root@example.com --fullname "Site Owner" --password '...'

Environment Variables:
    ROOT_EMAIL, ROOT_FULLNAME, ROOT_PASSWORD: Defaults for the CLI flags
    DATABASE_URL: PostgreSQL connection string (required unless USE_MEMORY_STORE=true)
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from pathlib import Path
from typing import Optional

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_ROOT_PASSWORD_LENGTH = 12


def validate_password(password: str) -> bool:
    """ROOT passwords need 12+ characters and 3 of 4 character classes."""
    if len(password) < MIN_ROOT_PASSWORD_LENGTH or len(password) > 128:
        return False
    has_upper = any(c.isupper() for c in password)
    has_lower = any(c.islower() for c in password)
    has_digit = any(c.isdigit() for c in password)
    has_other = any(not c.isalnum() for c in password)
    return sum([has_upper, has_lower, has_digit, has_other]) >= 3


async def bootstrap_root(
    store,
    email: str,
    fullname: str,
    password: str,
    *,
    dry_run: bool = False,
    hasher=None,
) -> dict:
    """Create the ROOT user on ``store`` unless one already exists.

    Returns a dict with ``status`` set to ``created``, ``exists``, ``conflict``
    (email taken by a non-ROOT user) or ``dry_run``.
    """
    from communityhub.service.passwords import PasswordHasher

    email = email.strip().lower()
    existing_root = await store.get_root_user()
    if existing_root:
        print(f"ROOT user already exists: {existing_root.email} (id: {existing_root.id})")
        return {"user_id": existing_root.id, "email": existing_root.email, "status": "exists"}

    existing = await store.get_user_by_email(email)
    if existing:
        print(f"Email {email} belongs to a {existing.role} user; choose another email for ROOT")
        return {"user_id": existing.id, "email": email, "status": "conflict"}

    if dry_run:
        print(f"[DRY RUN] Would create ROOT user: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    hasher = hasher or PasswordHasher()
    user = await store.create_user(
        email,
        fullname,
        await asyncio.to_thread(hasher.hash, password),
        role="ROOT",
        password_algo=hasher.algo,
    )
    print(f"Created ROOT user: {email} (id: {user.id})")
    return {"user_id": user.id, "email": email, "status": "created"}


async def _run(email: str, fullname: str, password: str, dry_run: bool) -> dict:
    from communityhub.config import get_settings
    from communityhub.storage.memory import MemoryStore
    from communityhub.storage.postgres import PostgresStore

    settings = get_settings()
    store: Optional[object]
    if settings.use_memory_store:
        store = MemoryStore()
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")
    else:
        store = PostgresStore(settings.database_url, min_size=1, max_size=2)
        await store.open()
    try:
        return await bootstrap_root(store, email, fullname, password, dry_run=dry_run)
    finally:
        await store.close()


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Create the ROOT user for Community Hub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("ROOT_EMAIL"), help="ROOT email")
    parser.add_argument(
        "--fullname", default=os.environ.get("ROOT_FULLNAME", "Root"), help="ROOT display name"
    )
    parser.add_argument("--password", default=os.environ.get("ROOT_PASSWORD"), help="ROOT password")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args(argv)

    if not args.email:
        print("Error: --email or ROOT_EMAIL environment variable required")
        return 1
    if not args.password:
        print("Error: --password or ROOT_PASSWORD environment variable required")
        return 1
    if not validate_password(args.password):
        print("Error: Password must be 12-128 characters with 3+ character classes")
        return 1

    try:
        result = asyncio.run(_run(args.email, args.fullname, args.password, args.dry_run))
    except (OSError, RuntimeError) as exc:
        print(f"Error: {exc}")
        return 1
    return 0 if result["status"] in {"created", "exists", "dry_run"} else 2


if __name__ == "__main__":
    sys.exit(main())
