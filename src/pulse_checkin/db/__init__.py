"""Database module for pulse check-ins."""

from pulse_checkin.db.database import async_session_maker, engine, init_db
from pulse_checkin.db.models import (
    CORE_ROLES,
    Base,
    CheckIn,
    Question,
    QuestionRole,
    Response,
    User,
    WorkspaceConfig,
)

__all__ = [
    "Base",
    "CORE_ROLES",
    "CheckIn",
    "Question",
    "QuestionRole",
    "Response",
    "User",
    "WorkspaceConfig",
    "engine",
    "async_session_maker",
    "init_db",
]
