"""Check-in exceptions shared across the engine, scheduler and admin surface."""


class CheckinError(Exception):
    """Base exception for check-in operations."""

    pass


class CheckinConfigurationError(CheckinError):
    """The question catalog cannot support a check-in (a core question is missing).

    Not retried automatically; an administrator has to fix the catalog.
    """

    def __init__(self, message: str, missing_roles: list[str] | None = None):
        self.missing_roles = missing_roles or []
        super().__init__(message)


class DeliveryError(CheckinError):
    """An outbound Slack message could not be delivered."""

    def __init__(self, message: str, user_handle: str = "unknown"):
        self.user_handle = user_handle
        super().__init__(f"[{user_handle}] {message}")


class QuestionRoleError(CheckinError):
    """A role change would break the one-active-question-per-core-role rule."""

    OCCUPIED = "occupied"
    EMPTY = "empty"

    def __init__(self, message: str, role: str, reason: str):
        self.role = role
        self.reason = reason
        super().__init__(message)


class ValidationError(CheckinError):
    """Malformed input (weekday, time of day, rating, queue order)."""

    pass


class NotFoundError(CheckinError):
    """Referenced record does not exist."""

    pass
