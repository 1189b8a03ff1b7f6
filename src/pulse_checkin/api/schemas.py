"""API request and response schemas."""

from datetime import date
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from pulse_checkin.db.models import QuestionRole


class QuestionOut(BaseModel):
    """A catalog question."""

    id: int
    text: str
    role: QuestionRole
    is_active: bool
    queue_position: int | None = None

    model_config = {"from_attributes": True}


class QuestionCreate(BaseModel):
    text: str = Field(..., min_length=1, description="Question text shown to users")
    role: QuestionRole = Field(default=QuestionRole.ROTATING, description="Question role")
    is_active: bool = True

    model_config = {"json_schema_extra": {
        "example": {"text": "What's one thing you learned this week?", "role": "rotating"}
    }}


class QuestionUpdate(BaseModel):
    """Edit wording or activation; omitted fields are left unchanged."""

    text: str | None = Field(default=None, min_length=1)
    is_active: bool | None = None


class RoleChange(BaseModel):
    role: str = Field(..., description="rating, went_well, didnt_go_well or rotating")


class ReorderRequest(BaseModel):
    question_ids: list[int] = Field(..., description="Every active rotating question id, in order")


class WorkspaceConfigOut(BaseModel):
    """Schedule configuration for a workspace."""

    slack_workspace_id: str
    check_in_day: str
    check_in_time: str
    reminder_times: list[str]
    rotation_offset: int
    last_rotated_week: date | None = None

    model_config = {"from_attributes": True}


class WorkspaceConfigUpdate(BaseModel):
    check_in_day: str | None = Field(default=None, description="Weekday name, e.g. thursday")
    check_in_time: str | None = Field(default=None, description="HH:MM in each user's local time")
    reminder_times: list[str] | None = Field(default=None, description="HH:MM times on the next day")

    model_config = {"json_schema_extra": {
        "example": {
            "check_in_day": "thursday",
            "check_in_time": "14:00",
            "reminder_times": ["09:00", "16:00"],
        }
    }}


class TriggerRequest(BaseModel):
    user_id: str = Field(..., min_length=1, description="Slack user ID")
    workspace_id: str | None = None


class TriggerResponse(BaseModel):
    status: str
    check_in_id: int


class UserOut(BaseModel):
    id: int
    slack_user_id: str
    display_name: str
    email: str | None = None
    timezone: str
    manager_id: int | None = None
    is_active: bool

    model_config = {"from_attributes": True}


class UserCreate(BaseModel):
    """Register a user ahead of their first check-in."""

    user_id: str = Field(..., min_length=1, description="Slack user ID")
    display_name: str = ""
    email: str | None = None
    timezone: str | None = Field(default=None, description="IANA zone, e.g. Europe/Prague")
    manager_id: str | None = Field(default=None, description="Slack user ID of the manager")

    @field_validator("timezone")
    @classmethod
    def known_timezone(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value
