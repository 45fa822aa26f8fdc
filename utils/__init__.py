"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, from_timestamp, parse_iso
from utils.user_context import (
    get_current_claims,
    set_current_claims,
    clear_current_claims,
)
