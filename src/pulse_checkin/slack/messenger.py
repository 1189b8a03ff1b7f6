"""Outbound messaging: the capability the engine and scheduler send through."""

import logging
from typing import Protocol

import aiohttp
from slack_sdk.errors import SlackApiError, SlackClientError
from slack_sdk.web.async_client import AsyncWebClient
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from pulse_checkin.config import settings
from pulse_checkin.db.models import QuestionRole
from pulse_checkin.exceptions import DeliveryError
from pulse_checkin.slack.messages import (
    build_plain_blocks,
    build_question_blocks,
    build_reminder_blocks,
)

logger = logging.getLogger(__name__)

_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, TimeoutError)
_DELIVERY_ERRORS = (SlackClientError, *_TRANSPORT_ERRORS)


def _is_transient(exc: BaseException) -> bool:
    """Rate limits and transport failures are retried; other API errors are final."""
    if isinstance(exc, SlackApiError):
        response = exc.response
        if getattr(response, "status_code", None) == 429:
            return True
        return response is not None and response.get("error") == "ratelimited"
    return isinstance(exc, _TRANSPORT_ERRORS)


class Messenger(Protocol):
    """Delivery capability. Every method raises DeliveryError on failure."""

    async def send_question_prompt(
        self,
        user_handle: str,
        role: QuestionRole,
        text: str,
        choices: tuple[str, ...] | None = None,
        number: int | None = None,
        preface: str | None = None,
    ) -> None: ...

    async def send_plain_message(self, user_handle: str, text: str) -> None: ...

    async def send_reminder(self, user_handle: str, kind: str = "first") -> None: ...


class SlackMessenger:
    """Send check-in DMs with chat.postMessage, retrying transient failures."""

    def __init__(self, client: AsyncWebClient, attempts: int | None = None):
        self.client = client
        self.attempts = attempts or settings.SLACK_SEND_RETRIES

    async def _post(self, user_handle: str, text: str, blocks: list[dict]) -> None:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception(_is_transient),
                wait=wait_exponential(multiplier=1, min=1, max=10),
                stop=stop_after_attempt(self.attempts),
                reraise=True,
            ):
                with attempt:
                    await self.client.chat_postMessage(channel=user_handle, text=text, blocks=blocks)
        except _DELIVERY_ERRORS as e:
            raise DeliveryError(f"chat.postMessage failed: {e}", user_handle) from e

    async def send_question_prompt(
        self,
        user_handle: str,
        role: QuestionRole,
        text: str,
        choices: tuple[str, ...] | None = None,
        number: int | None = None,
        preface: str | None = None,
    ) -> None:
        blocks = build_question_blocks(role, text, number=number, choices=choices, preface=preface)
        fallback = (
            "Hey! Time for your weekly pulse check-in!" if number == 1 else "Next question..."
        )
        await self._post(user_handle, fallback, blocks)
        logger.debug(f"Sent {role.value} question to {user_handle}")

    async def send_plain_message(self, user_handle: str, text: str) -> None:
        await self._post(user_handle, text, build_plain_blocks(text))

    async def send_reminder(self, user_handle: str, kind: str = "first") -> None:
        text, blocks = build_reminder_blocks(kind)
        await self._post(user_handle, text, blocks)
        logger.info(f"{kind} reminder sent to {user_handle}")
