"""Slack bot runtime: wires the check-in engine and scheduler to Bolt."""

import argparse
import asyncio
import logging
import os
import re
from dataclasses import dataclass
from typing import Any

from slack_bolt.async_app import AsyncApp

from pulse_checkin.config import settings
from pulse_checkin.db.database import init_db
from pulse_checkin.exceptions import CheckinConfigurationError
from pulse_checkin.logging_config import configure_logging
from pulse_checkin.scheduler import Scheduler
from pulse_checkin.sessions.engine import LaunchResult, SessionEngine
from pulse_checkin.slack.messenger import SlackMessenger
from pulse_checkin.users import SlackUserDirectory

logger = logging.getLogger(__name__)

RATING_ACTION_PATTERN = re.compile(r"^rating_[1-5]$")

# Event deduplication; Slack retries deliveries it thinks were missed
_processed_events: set[str] = set()
_MAX_PROCESSED_EVENTS = 1000


def _is_duplicate_event(event: dict) -> bool:
    """Check if we've already processed this event."""
    event_id = event.get("client_msg_id") or event.get("ts", "")
    if not event_id:
        return False

    if event_id in _processed_events:
        logger.debug(f"Skipping duplicate event: {event_id}")
        return True

    _processed_events.add(event_id)

    if len(_processed_events) > _MAX_PROCESSED_EVENTS:
        to_remove = list(_processed_events)[: _MAX_PROCESSED_EVENTS // 2]
        for item in to_remove:
            _processed_events.discard(item)

    return False


@dataclass
class BotRuntime:
    """Everything one bot process needs, built once at startup."""

    app: AsyncApp
    engine: SessionEngine
    scheduler: Scheduler


async def handle_rating_action(ack: Any, body: dict, engine: SessionEngine) -> None:
    """Rating button click (action_id ``rating_1`` .. ``rating_5``)."""
    await ack()

    user_id = body.get("user", {}).get("id")
    actions = body.get("actions") or []
    if not user_id or not actions:
        return

    # No live session (finished or expired check-in): submit_rating ignores the click
    await engine.submit_rating(user_id, actions[0].get("value", ""))


async def handle_direct_message(event: dict, engine: SessionEngine) -> None:
    """Free-text answer in the bot DM."""
    if event.get("channel_type") != "im":
        return
    # Bot echoes, edits and deletions are not answers
    if event.get("bot_id") or event.get("subtype"):
        return
    if _is_duplicate_event(event):
        return

    user_id = event.get("user")
    if not user_id:
        return
    await engine.submit_text(user_id, event.get("text", ""))


async def handle_checkin_command(
    ack: Any, command: dict, respond: Any, engine: SessionEngine
) -> None:
    """``/checkin``: start (or restart) this week's check-in for the caller."""
    await ack()

    user_id = command.get("user_id")
    try:
        result = await engine.launch(user_id)
    except CheckinConfigurationError as e:
        await respond(str(e))
        return
    except Exception as e:
        logger.error(f"/checkin failed for {user_id}: {e}", exc_info=True)
        await respond("Sorry, I couldn't start your check-in. Please try again later.")
        return

    if result.status == LaunchResult.ALREADY_COMPLETED:
        await respond("You've already completed this week's check-in. Thanks!")
    else:
        await respond("Your weekly check-in is waiting in your DMs.")


def register_checkin_handlers(app: AsyncApp, engine: SessionEngine) -> None:
    """Register the check-in handlers on an AsyncApp."""

    @app.action(RATING_ACTION_PATTERN)
    async def on_rating(ack: Any, body: dict) -> None:
        await handle_rating_action(ack, body, engine)

    @app.event("message")
    async def on_message(event: dict) -> None:
        await handle_direct_message(event, engine)

    @app.command("/checkin")
    async def on_checkin(ack: Any, command: dict, respond: Any) -> None:
        await handle_checkin_command(ack, command, respond, engine)

    logger.info("Registered check-in handlers")


def create_runtime() -> BotRuntime:
    """Build the Bolt app, engine and scheduler from settings."""
    app = AsyncApp(
        token=settings.SLACK_BOT_TOKEN,
        signing_secret=settings.SLACK_SIGNING_SECRET,
    )
    messenger = SlackMessenger(app.client)
    engine = SessionEngine(messenger, SlackUserDirectory(app.client))
    scheduler = Scheduler(engine, messenger)
    register_checkin_handlers(app, engine)
    return BotRuntime(app=app, engine=engine, scheduler=scheduler)


async def run_socket_mode(runtime: BotRuntime) -> None:
    """Run the bot over Socket Mode with the scheduler alongside it."""
    from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler

    if not settings.SLACK_APP_TOKEN:
        raise ValueError("SLACK_APP_TOKEN required for socket mode")

    await init_db()
    handler = AsyncSocketModeHandler(runtime.app, settings.SLACK_APP_TOKEN)
    runtime.scheduler.start()
    logger.info("Starting bot in Socket Mode...")
    try:
        await handler.start_async()
    finally:
        await runtime.scheduler.stop()


def run_http_mode(port: int = 8080) -> None:
    """Serve Slack events, health and admin routes from one FastAPI app.

    The scheduler starts and stops with the app lifespan.

    Args:
        port: Port to listen on
    """
    import uvicorn

    from pulse_checkin.main import create_app

    app = create_app(create_runtime())
    logger.info(f"Starting bot in HTTP mode on port {port}...")
    uvicorn.run(app, host="0.0.0.0", port=port)


def run_bot(port: int = 8080, use_socket_mode: bool = False) -> None:
    """Run the Slack bot.

    Args:
        port: Port for HTTP mode
        use_socket_mode: Use Socket Mode instead of HTTP (requires SLACK_APP_TOKEN)
    """
    if use_socket_mode:
        asyncio.run(run_socket_mode(create_runtime()))
    else:
        run_http_mode(port=port)


def main() -> None:
    """Main entry point with CLI argument parsing."""
    parser = argparse.ArgumentParser(description="Run the pulse check-in Slack bot")
    parser.add_argument(
        "--socket",
        action="store_true",
        help="Run in Socket Mode",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("PORT", 8080)),
        help="Port to listen on (default: 8080 or PORT env var)",
    )
    args = parser.parse_args()

    configure_logging()
    run_bot(port=args.port, use_socket_mode=args.socket)


if __name__ == "__main__":
    main()
