"""Conversational check-in sessions."""

from pulse_checkin.sessions.engine import LaunchResult, SessionEngine
from pulse_checkin.sessions.session import (
    CheckinSession,
    QuestionRef,
    SessionQuestions,
    SessionStore,
    Step,
)

__all__ = [
    "CheckinSession",
    "LaunchResult",
    "QuestionRef",
    "SessionEngine",
    "SessionQuestions",
    "SessionStore",
    "Step",
]
