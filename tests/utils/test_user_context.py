"""Tests for utils/user_context.py - User identity propagation via contextvars."""

from uuid import uuid4

import pytest

from utils.user_context import (
    clear_current_user,
    get_current_role,
    get_current_user_id,
    set_current_user,
    user_context,
)


class TestGetCurrentUserId:
    """Tests for get_current_user_id()."""

    def test_raises_without_set(self):
        """Must raise RuntimeError when no context is set."""
        with pytest.raises(RuntimeError, match="No user context"):
            get_current_user_id()

    def test_role_none_without_set(self):
        assert get_current_role() is None


class TestSetAndClear:
    """Tests for set_current_user() and clear_current_user()."""

    def test_set_then_get(self):
        user_id = uuid4()
        set_current_user(user_id, "ADMIN")

        assert get_current_user_id() == user_id
        assert get_current_role() == "ADMIN"

    def test_clear_resets_both(self):
        set_current_user(uuid4(), "USER")
        clear_current_user()

        with pytest.raises(RuntimeError):
            get_current_user_id()
        assert get_current_role() is None


class TestUserContextManager:
    """Tests for user_context() context manager."""

    def test_sets_and_clears(self):
        user_id = uuid4()

        with user_context(user_id, "USER"):
            assert get_current_user_id() == user_id
            assert get_current_role() == "USER"

        with pytest.raises(RuntimeError):
            get_current_user_id()

    def test_restores_previous(self):
        """Nested context managers should restore outer user and role."""
        outer_id = uuid4()
        inner_id = uuid4()

        with user_context(outer_id, "ADMIN"):
            with user_context(inner_id, "USER"):
                assert get_current_user_id() == inner_id
                assert get_current_role() == "USER"

            assert get_current_user_id() == outer_id
            assert get_current_role() == "ADMIN"

    def test_clears_on_exception(self):
        """Context should be cleared even if exception is raised."""
        with pytest.raises(ValueError):
            with user_context(uuid4()):
                raise ValueError("test exception")

        with pytest.raises(RuntimeError):
            get_current_user_id()
