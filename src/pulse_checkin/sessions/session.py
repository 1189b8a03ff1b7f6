"""In-memory conversational state for in-progress check-ins."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pulse_checkin.db.models import Question, QuestionRole
from pulse_checkin.timeutils import utcnow

logger = logging.getLogger(__name__)


class Step(str, Enum):
    """Survey steps, asked strictly in this order."""

    RATING = "rating"
    WENT_WELL = "went_well"
    DIDNT_GO_WELL = "didnt_go_well"
    ROTATING = "rotating"

    @property
    def number(self) -> int:
        """1-based question number shown to the user."""
        return _ORDER.index(self) + 1

    def next_step(self) -> "Step | None":
        """Following step, or None when this is the last one."""
        if self is Step.RATING:
            return Step.WENT_WELL
        if self is Step.WENT_WELL:
            return Step.DIDNT_GO_WELL
        if self is Step.DIDNT_GO_WELL:
            return Step.ROTATING
        if self is Step.ROTATING:
            return None
        raise ValueError(f"Unhandled step: {self}")


_ORDER = (Step.RATING, Step.WENT_WELL, Step.DIDNT_GO_WELL, Step.ROTATING)


@dataclass(frozen=True)
class QuestionRef:
    """Question snapshot taken at launch so later catalog edits don't move a live session."""

    id: int
    text: str
    role: QuestionRole

    @classmethod
    def from_model(cls, question: Question) -> "QuestionRef":
        return cls(id=question.id, text=question.text, role=question.role)


@dataclass(frozen=True)
class SessionQuestions:
    rating: QuestionRef
    went_well: QuestionRef
    didnt_go_well: QuestionRef
    rotating: QuestionRef | None = None

    def for_step(self, step: Step) -> QuestionRef | None:
        if step is Step.RATING:
            return self.rating
        if step is Step.WENT_WELL:
            return self.went_well
        if step is Step.DIDNT_GO_WELL:
            return self.didnt_go_well
        if step is Step.ROTATING:
            return self.rotating
        raise ValueError(f"Unhandled step: {step}")


@dataclass
class CheckinSession:
    """One user's progress through this week's survey."""

    user_handle: str
    check_in_id: int
    user_id: int
    questions: SessionQuestions
    step: Step = Step.RATING
    answers: dict[Step, Any] = field(default_factory=dict)
    started_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def record(self, value: Any, now: datetime | None = None) -> Step | None:
        """Store the answer for the current step and move forward.

        Returns:
            The new step, or None when the survey is finished (step unchanged)
        """
        self.answers[self.step] = value
        self.last_activity_at = now or utcnow()
        following = self.step.next_step()
        if following is not None:
            self.step = following
        return following


class SessionStore:
    """Owner of all live sessions, keyed by Slack user handle.

    At most one session exists per handle; ``put`` replaces and returns the
    previous one.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, CheckinSession] = {}

    def get(self, user_handle: str) -> CheckinSession | None:
        return self._sessions.get(user_handle)

    def put(self, session: CheckinSession) -> CheckinSession | None:
        previous = self._sessions.get(session.user_handle)
        self._sessions[session.user_handle] = session
        return previous

    def remove(self, user_handle: str, session: CheckinSession | None = None) -> bool:
        """Delete the session for a handle.

        When ``session`` is given, only that exact session is removed, so a
        finishing flow never deletes a replacement launched meanwhile.
        """
        current = self._sessions.get(user_handle)
        if current is None or (session is not None and current is not session):
            return False
        del self._sessions[user_handle]
        return True

    def expire_idle(self, max_idle: timedelta, now: datetime | None = None) -> list[CheckinSession]:
        """Drop sessions with no activity for longer than ``max_idle``."""
        now = now or utcnow()
        expired = [s for s in self._sessions.values() if now - s.last_activity_at > max_idle]
        for session in expired:
            del self._sessions[session.user_handle]
        return expired

    def __contains__(self, user_handle: object) -> bool:
        return user_handle in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
