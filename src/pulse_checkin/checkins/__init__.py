"""Weekly check-in records."""

from pulse_checkin.checkins.store import (
    claim_reminder_slot,
    complete_check_in,
    find_check_in,
    get_check_in,
    get_responses_for_check_in,
    increment_reminder_count,
    insert_response,
    list_active_users,
    upsert_check_in,
    validate_rating,
)

__all__ = [
    "claim_reminder_slot",
    "complete_check_in",
    "find_check_in",
    "get_check_in",
    "get_responses_for_check_in",
    "increment_reminder_count",
    "insert_response",
    "list_active_users",
    "upsert_check_in",
    "validate_rating",
]
