"""User directory: map Slack handles to User rows, creating them on demand."""

import logging
from typing import Any, Protocol

from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pulse_checkin.config import settings
from pulse_checkin.db.models import User
from pulse_checkin.exceptions import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class UserDirectory(Protocol):
    async def resolve(self, session: AsyncSession, user_handle: str) -> User:
        """Return the User for a Slack handle, creating it if needed."""
        ...


async def get_user_by_handle(session: AsyncSession, user_handle: str) -> User | None:
    result = await session.execute(select(User).where(User.slack_user_id == user_handle))
    return result.scalar_one_or_none()


async def create_user(
    session: AsyncSession,
    user_handle: str,
    display_name: str = "",
    email: str | None = None,
    timezone: str | None = None,
    manager_id: int | None = None,
    department: str | None = None,
    is_admin: bool = False,
    is_manager: bool = False,
) -> User:
    if await get_user_by_handle(session, user_handle) is not None:
        raise ValidationError(f"User {user_handle} already exists")
    user = User(
        slack_user_id=user_handle,
        display_name=display_name or user_handle,
        email=email,
        timezone=timezone or settings.DEFAULT_TIMEZONE,
        manager_id=manager_id,
        department=department,
        is_active=True,
        is_admin=is_admin,
        is_manager=is_manager,
    )
    session.add(user)
    await session.commit()
    await session.refresh(user)
    logger.info(f"Created user {user_handle} ({user.display_name}, tz={user.timezone})")
    return user


async def deactivate_user(session: AsyncSession, user_handle: str) -> User:
    """Soft-delete a user; their check-in history is kept."""
    user = await get_user_by_handle(session, user_handle)
    if user is None:
        raise NotFoundError(f"User {user_handle} not found")
    user.is_active = False
    await session.commit()
    await session.refresh(user)
    return user


def _profile_fields(user_info: dict[str, Any]) -> dict[str, Any]:
    profile = user_info.get("profile") or {}
    return {
        "display_name": (
            profile.get("display_name")
            or user_info.get("real_name")
            or user_info.get("name")
            or ""
        ),
        "email": profile.get("email"),
        "timezone": user_info.get("tz") or settings.DEFAULT_TIMEZONE,
    }


class SlackUserDirectory:
    """Resolve users from the database, falling back to Slack's users.info."""

    def __init__(self, client: AsyncWebClient):
        self.client = client

    async def resolve(self, session: AsyncSession, user_handle: str) -> User:
        user = await get_user_by_handle(session, user_handle)
        if user is not None:
            return user

        fields: dict[str, Any] = {}
        try:
            response = await self.client.users_info(user=user_handle)
            fields = _profile_fields(response["user"])
        except SlackApiError as e:
            # Still create the user so the check-in can go out; timezone is best effort
            logger.warning(f"users.info failed for {user_handle}: {e.response.get('error')}")

        return await create_user(session, user_handle, **fields)
