"""Tests for scripts/seed_users.py - development account seeding."""

import pytest

from auth.types import Role
from scripts.seed_users import (
    SEED_ACCOUNTS,
    UnsafeSeedError,
    assert_safe_to_run,
    main,
    seed_users,
)


class TestSafetyChecks:
    def test_refuses_production(self):
        with pytest.raises(UnsafeSeedError, match="production"):
            assert_safe_to_run({"APP_ENV": "Production", "ALLOW_DB_SEED": "true"})

    def test_requires_explicit_opt_in(self):
        with pytest.raises(UnsafeSeedError, match="ALLOW_DB_SEED"):
            assert_safe_to_run({"APP_ENV": "development"})

    def test_allowed(self):
        assert_safe_to_run({"ALLOW_DB_SEED": "true"}) is None


class TestSeedUsers:
    def test_seeds_verified_accounts(self, user_store, hasher):
        seeded = seed_users(user_store, hasher, "Seed-Passw0rd!")

        assert [(u.email, u.role) for u in seeded] == SEED_ACCOUNTS
        assert all(u.is_verified for u in seeded)
        assert hasher.verify("Seed-Passw0rd!", seeded[0].password_hash)

    def test_rerun_resets_password_keeps_ids(self, user_store, hasher):
        first = seed_users(user_store, hasher, "Seed-Passw0rd!")
        second = seed_users(user_store, hasher, "Other-Passw0rd!")

        assert [u.id for u in first] == [u.id for u in second]
        admin = user_store.find_by_email("admin@example.com")
        assert admin.role == Role.ADMIN
        assert hasher.verify("Other-Passw0rd!", admin.password_hash)


class TestMain:
    def test_refusal_exits_nonzero(self, monkeypatch, capsys):
        monkeypatch.setenv("APP_ENV", "production")
        monkeypatch.setenv("ALLOW_DB_SEED", "true")

        assert main([]) == 1
        assert "production" in capsys.readouterr().out

    def test_dry_run_touches_nothing(self, monkeypatch, capsys):
        monkeypatch.setenv("APP_ENV", "development")
        monkeypatch.setenv("ALLOW_DB_SEED", "true")

        assert main(["--dry-run"]) == 0
        out = capsys.readouterr().out
        for email, _ in SEED_ACCOUNTS:
            assert email in out
