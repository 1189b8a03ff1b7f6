"""SQLAlchemy models for the pulse check-in store.

ACTIVE MODELS:
- User: Slack identity, timezone and org position (manager tree)
- Question: core (rating / went well / didn't go well) and rotating questions
- CheckIn: one row per (user, week start date)
- Response: answer to the week's rotating question
- WorkspaceConfig: schedule and rotation offset per Slack workspace

In-progress conversations are NOT stored here; see pulse_checkin.sessions.
"""

from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class QuestionRole(str, Enum):
    """Role a question plays in the weekly survey."""

    RATING = "rating"
    WENT_WELL = "went_well"
    DIDNT_GO_WELL = "didnt_go_well"
    ROTATING = "rotating"

    @property
    def is_core(self) -> bool:
        return self is not QuestionRole.ROTATING


CORE_ROLES = (QuestionRole.RATING, QuestionRole.WENT_WELL, QuestionRole.DIDNT_GO_WELL)


class User(Base):
    """Person who receives weekly check-ins."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slack_user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name: Mapped[str] = mapped_column(String(256), default="")
    email: Mapped[str | None] = mapped_column(String(256), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), default="America/New_York")

    # Org tree
    manager_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True
    )
    department: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Soft delete and roles
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    is_manager: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    manager: Mapped["User | None"] = relationship(
        "User", remote_side=[id], back_populates="direct_reports"
    )
    direct_reports: Mapped[list["User"]] = relationship("User", back_populates="manager")
    check_ins: Mapped[list["CheckIn"]] = relationship("CheckIn", back_populates="user")

    def __repr__(self) -> str:
        return f"<User(slack_user_id={self.slack_user_id}, name={self.display_name})>"


class Question(Base):
    """Survey question.

    Exactly one active question exists per core role. Active rotating
    questions carry a dense zero-based queue_position.
    """

    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    text: Mapped[str] = mapped_column(Text)
    role: Mapped[QuestionRole] = mapped_column(
        SAEnum(
            QuestionRole,
            native_enum=False,
            length=32,
            values_callable=lambda roles: [r.value for r in roles],
        ),
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    queue_position: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    @property
    def is_core(self) -> bool:
        return self.role.is_core

    def __repr__(self) -> str:
        return f"<Question(id={self.id}, role={self.role.value}, text={self.text[:30]}...)>"


class CheckIn(Base):
    """One user's check-in for one week."""

    __tablename__ = "check_ins"
    __table_args__ = (UniqueConstraint("user_id", "week_start_date", name="uq_check_in_user_week"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)
    week_start_date: Mapped[date] = mapped_column(Date, index=True)

    # Core answers (null until the session completes)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    went_well: Mapped[str | None] = mapped_column(Text, nullable=True)
    didnt_go_well: Mapped[str | None] = mapped_column(Text, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="check_ins")
    responses: Mapped[list["Response"]] = relationship(
        "Response", back_populates="check_in", cascade="all, delete-orphan"
    )

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def __repr__(self) -> str:
        return (
            f"<CheckIn(user_id={self.user_id}, week={self.week_start_date}, "
            f"completed={self.is_completed})>"
        )


class Response(Base):
    """Answer to the rotating question asked in a check-in."""

    __tablename__ = "responses"
    __table_args__ = (
        UniqueConstraint("check_in_id", "question_id", name="uq_response_check_in_question"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    check_in_id: Mapped[int] = mapped_column(Integer, ForeignKey("check_ins.id"), index=True)
    question_id: Mapped[int] = mapped_column(Integer, ForeignKey("questions.id"), index=True)
    response_text: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    check_in: Mapped["CheckIn"] = relationship("CheckIn", back_populates="responses")
    question: Mapped["Question"] = relationship("Question")

    def __repr__(self) -> str:
        return f"<Response(check_in_id={self.check_in_id}, question_id={self.question_id})>"


class WorkspaceConfig(Base):
    """Schedule settings and rotation offset for a Slack workspace."""

    __tablename__ = "workspace_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    slack_workspace_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    check_in_day: Mapped[str] = mapped_column(String(16), default="thursday")
    check_in_time: Mapped[str] = mapped_column(String(5), default="14:00")
    reminder_times: Mapped[list[str]] = mapped_column(JSON, default=list)

    # Shared index into the active rotating queue (wrapped at lookup time)
    rotation_offset: Mapped[int] = mapped_column(Integer, default=0)
    last_rotated_week: Mapped[date | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<WorkspaceConfig(workspace={self.slack_workspace_id}, "
            f"day={self.check_in_day}, time={self.check_in_time})>"
        )
