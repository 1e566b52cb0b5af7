"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, parse_iso, seconds_until
from utils.user_context import (
    get_current_user_id,
    get_current_role,
    set_current_user,
    clear_current_user,
    user_context,
)
