"""Propagate the authenticated identity through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)
_current_role: ContextVar[str | None] = ContextVar("current_role", default=None)


def get_current_user_id() -> UUID:
    """
    Get current user ID from context.

    Raises RuntimeError if no user context is set - reaching user-scoped
    code without an authenticated request is a bug.
    """
    user_id = _current_user_id.get()
    if user_id is None:
        raise RuntimeError(
            "No user context set. This usually means you're calling "
            "user-scoped code outside of an authenticated request."
        )
    return user_id


def get_current_role() -> str | None:
    """Role tag of the authenticated user, or None outside a request."""
    return _current_role.get()


def set_current_user(user_id: UUID, role: str | None = None) -> None:
    """
    Set current user ID (and role tag) in context.

    Called by auth middleware after validating the access token.
    """
    _current_user_id.set(user_id)
    _current_role.set(role)


def clear_current_user() -> None:
    """
    Clear user context.

    Called by auth middleware in a finally block after the request completes.
    """
    _current_user_id.set(None)
    _current_role.set(None)


@contextmanager
def user_context(user_id: UUID, role: str | None = None):
    """
    Temporarily act as a user: tests, background jobs, admin operations.

    Example:
        with user_context(technician_user_id):
            orders = db.execute("SELECT * FROM work_orders")  # RLS filtered
    """
    previous_user = _current_user_id.get()
    previous_role = _current_role.get()
    set_current_user(user_id, role)
    try:
        yield
    finally:
        if previous_user is None:
            clear_current_user()
        else:
            set_current_user(previous_user, previous_role)
