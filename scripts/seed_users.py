#!/usr/bin/env python3
"""Seed development login accounts.

Usage:
    ALLOW_DB_SEED=true SEED_PASSWORD='Ch4nge-me!' python -m scripts.seed_users

Environment Variables:
    APP_ENV: refuses to run when set to 'production'
    ALLOW_DB_SEED: must be 'true'
    SEED_PASSWORD: password for every seeded account

Re-running is safe: accounts are upserted by email, so the password and
role are reset and the email stays verified.
"""

import argparse
import logging
import os
import sys
from typing import Mapping

from dotenv import load_dotenv

from auth.config import AuthConfig
from auth.passwords import PasswordHasher
from auth.stores import CredentialStore
from auth.types import Role, User
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

SEED_ACCOUNTS: list[tuple[str, Role]] = [
    ("admin@example.com", Role.ADMIN),
    ("tech1@example.com", Role.USER),
    ("tech2@example.com", Role.USER),
]

DEFAULT_SEED_PASSWORD = "Example-Seed-Secret-1"


class UnsafeSeedError(RuntimeError):
    """Seeding refused in this environment."""


def assert_safe_to_run(environ: Mapping[str, str] | None = None) -> None:
    """Raise UnsafeSeedError unless seeding is explicitly allowed outside production."""
    env = os.environ if environ is None else environ
    if env.get("APP_ENV", "development").lower() == "production":
        raise UnsafeSeedError("Refusing to seed in production (APP_ENV=production).")
    if env.get("ALLOW_DB_SEED") != "true":
        raise UnsafeSeedError("Set ALLOW_DB_SEED=true to seed the database.")


def seed_users(users: CredentialStore, hasher: PasswordHasher, password: str) -> list[User]:
    """Upsert the seed accounts, all verified. Hashes once, outside any store call."""
    password_hash = hasher.hash(password)
    verified_at = now_utc()

    seeded = []
    for email, role in SEED_ACCOUNTS:
        user = users.upsert_by_email(email, password_hash, role, email_verified_at=verified_at)
        logger.info(f"Seeded {role.value} account {user.email} ({user.id})")
        seeded.append(user)
    return seeded


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Seed development login accounts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show which accounts would be seeded without touching the database",
    )
    args = parser.parse_args(argv)

    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    try:
        assert_safe_to_run()
    except UnsafeSeedError as e:
        print(f"Error: {e}")
        return 1

    if args.dry_run:
        for email, role in SEED_ACCOUNTS:
            print(f"[DRY RUN] Would upsert {role.value} account {email}")
        return 0

    # Imported late so --dry-run works without Vault or a database
    from auth.database import UserDatabase
    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url

    password = os.environ.get("SEED_PASSWORD", DEFAULT_SEED_PASSWORD)
    hasher = PasswordHasher(AuthConfig.from_env().password_hashing)
    postgres = PostgresClient(get_database_url())
    try:
        seeded = seed_users(UserDatabase(postgres), hasher, password)
    finally:
        postgres.close()

    print("Seeded login accounts:")
    for user in seeded:
        print(f" - {user.email} ({user.role.value})")
    print("   password: value of SEED_PASSWORD")
    return 0


if __name__ == "__main__":
    sys.exit(main())
