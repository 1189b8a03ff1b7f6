"""CLI commands for the pulse check-in bot."""

import asyncio
import logging
import os
import sys
from typing import Any

import click
import httpx

from pulse_checkin.config import settings
from pulse_checkin.exceptions import CheckinError
from pulse_checkin.logging_config import configure_logging

logger = logging.getLogger(__name__)

DEFAULT_BOT_URL = f"http://localhost:{os.environ.get('PORT', 8080)}"


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cli(verbose: bool) -> None:
    """Pulse check-in CLI."""
    configure_logging(verbose)


@cli.command()
@click.option("--seed", is_flag=True, help="Insert the default question catalog if empty")
def init_db(seed: bool) -> None:
    """Initialize the database schema."""
    asyncio.run(_init_db(seed))


async def _init_db(seed: bool) -> None:
    """Async implementation of init-db command."""
    from pulse_checkin.db.database import async_session_maker, init_db
    from pulse_checkin.questions.catalog import seed_default_questions

    await init_db()
    click.echo("Database initialized successfully!")

    if seed:
        async with async_session_maker() as session:
            created = await seed_default_questions(session)
        if created:
            click.echo(f"Seeded {created} default questions")
        else:
            click.echo("Questions already present, nothing seeded")


# =============================================================================
# BOT COMMANDS
# =============================================================================


@cli.command()
@click.option("--port", "-p", type=int, default=int(os.environ.get("PORT", 8080)), help="Port to run on")
@click.option("--socket-mode", "-s", is_flag=True, help="Use Socket Mode (requires SLACK_APP_TOKEN)")
def run_bot(port: int, socket_mode: bool) -> None:
    """Run the Slack bot with the check-in scheduler."""
    if not settings.SLACK_BOT_TOKEN:
        click.echo("Error: SLACK_BOT_TOKEN not set in environment", err=True)
        sys.exit(1)

    if not socket_mode and not settings.SLACK_SIGNING_SECRET:
        click.echo("Error: SLACK_SIGNING_SECRET not set in environment", err=True)
        sys.exit(1)

    if socket_mode and not settings.SLACK_APP_TOKEN:
        click.echo("Error: SLACK_APP_TOKEN required for socket mode", err=True)
        sys.exit(1)

    from pulse_checkin.slack.bot import run_bot as start_bot

    click.echo("Starting pulse check-in bot...")
    click.echo(f"  Mode: {'Socket Mode' if socket_mode else f'HTTP on port {port}'}")
    click.echo(f"  Scheduler: every {settings.SCHEDULER_TICK_MINUTES} min")

    start_bot(port=port, use_socket_mode=socket_mode)


async def _admin_request(url: str, method: str, path: str, payload: dict | None = None) -> Any:
    """Call the admin API of a running bot."""
    headers = {}
    if settings.ADMIN_API_TOKEN:
        headers["Authorization"] = f"Bearer {settings.ADMIN_API_TOKEN}"

    try:
        async with httpx.AsyncClient(base_url=url, timeout=60.0) as client:
            response = await client.request(method, path, json=payload, headers=headers)
    except httpx.HTTPError as e:
        click.echo(f"Could not reach the bot at {url}: {e}", err=True)
        sys.exit(1)

    if response.status_code >= 400:
        detail = response.json().get("detail", response.text) if response.content else ""
        click.echo(f"Error {response.status_code}: {detail}", err=True)
        sys.exit(1)
    return response.json()


@cli.command()
@click.option("--url", envvar="PULSE_CHECKIN_URL", default=DEFAULT_BOT_URL, help="Running bot base URL")
def tick(url: str) -> None:
    """Run one scheduler tick in the running bot."""
    report = asyncio.run(_admin_request(url, "POST", "/admin/tick"))
    click.echo("Tick complete:")
    for key, value in report.items():
        click.echo(f"  {key}: {value}")


@cli.command()
@click.argument("user_id")
@click.option("--url", envvar="PULSE_CHECKIN_URL", default=DEFAULT_BOT_URL, help="Running bot base URL")
def trigger_checkin(user_id: str, url: str) -> None:
    """Send this week's check-in to USER_ID now."""
    result = asyncio.run(
        _admin_request(url, "POST", "/admin/trigger-checkin", {"user_id": user_id})
    )
    click.echo(f"Check-in {result['check_in_id']} for {user_id}: {result['status']}")


# =============================================================================
# CONFIGURATION COMMANDS
# =============================================================================


@cli.command()
def rotate() -> None:
    """Advance the rotating question by one, outside the weekly schedule."""
    asyncio.run(_rotate())


async def _rotate() -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.questions.catalog import get_rotating_question_at_offset
    from pulse_checkin.workspace import advance_rotation_offset

    async with async_session_maker() as session:
        offset = await advance_rotation_offset(session)
        question = await get_rotating_question_at_offset(session, offset)

    click.echo(f"Rotation offset is now {offset}")
    if question:
        click.echo(f"Next rotating question: {question.text}")
    else:
        click.echo("No active rotating questions")


@cli.command()
def show_config() -> None:
    """Show the workspace schedule."""
    asyncio.run(_show_config())


async def _show_config() -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.workspace import get_workspace_config

    async with async_session_maker() as session:
        config = await get_workspace_config(session)

    click.echo(f"Workspace: {config.slack_workspace_id}")
    click.echo(f"  Check-in: {config.check_in_day} at {config.check_in_time} (user local time)")
    click.echo(f"  Reminders: {', '.join(config.reminder_times) or 'none'}")
    click.echo(f"  Rotation offset: {config.rotation_offset}")
    click.echo(f"  Last rotated week: {config.last_rotated_week or 'never'}")


@cli.command()
@click.option("--day", "-d", help="Check-in weekday, e.g. thursday")
@click.option("--time", "-t", "check_in_time", help="Check-in time, HH:MM")
@click.option("--reminders", "-r", help="Comma-separated reminder times, HH:MM (empty string for none)")
def set_config(day: str | None, check_in_time: str | None, reminders: str | None) -> None:
    """Update the workspace schedule."""
    asyncio.run(_set_config(day, check_in_time, reminders))


async def _set_config(day: str | None, check_in_time: str | None, reminders: str | None) -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.workspace import update_workspace_config

    reminder_times = None
    if reminders is not None:
        reminder_times = [t.strip() for t in reminders.split(",") if t.strip()]

    try:
        async with async_session_maker() as session:
            await update_workspace_config(
                session,
                check_in_day=day,
                check_in_time=check_in_time,
                reminder_times=reminder_times,
            )
    except CheckinError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    await _show_config()


# =============================================================================
# QUESTION CATALOG COMMANDS
# =============================================================================


@cli.group()
def questions() -> None:
    """Question catalog management commands."""
    pass


@questions.command(name="list")
@click.option("--all", "-a", "show_all", is_flag=True, help="Include inactive questions")
def questions_list(show_all: bool) -> None:
    """List questions: core roles first, then the rotating queue."""
    asyncio.run(_questions_list(show_all))


async def _questions_list(show_all: bool) -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.questions.catalog import list_questions

    async with async_session_maker() as session:
        items = await list_questions(session, active_only=not show_all)

    if not items:
        click.echo("No questions. Run: pulse-checkin init-db --seed")
        return

    for question in items:
        position = "" if question.queue_position is None else f" #{question.queue_position}"
        inactive = "" if question.is_active else " (inactive)"
        click.echo(f"[{question.id}] {question.role.value}{position}{inactive}: {question.text}")


@questions.command(name="set-role")
@click.argument("question_id", type=int)
@click.argument("role")
def questions_set_role(question_id: int, role: str) -> None:
    """Move QUESTION_ID to ROLE (rating, went_well, didnt_go_well, rotating)."""
    asyncio.run(_questions_set_role(question_id, role))


async def _questions_set_role(question_id: int, role: str) -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.questions.catalog import change_question_role

    try:
        async with async_session_maker() as session:
            question = await change_question_role(session, question_id, role)
    except CheckinError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Question {question.id} is now {question.role.value}")


@questions.command(name="reorder")
@click.argument("question_ids", nargs=-1, type=int, required=True)
def questions_reorder(question_ids: tuple[int, ...]) -> None:
    """Set the rotating queue order to QUESTION_IDS."""
    asyncio.run(_questions_reorder(list(question_ids)))


async def _questions_reorder(question_ids: list[int]) -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.questions.catalog import reorder_rotation_queue

    try:
        async with async_session_maker() as session:
            queue = await reorder_rotation_queue(session, question_ids)
    except CheckinError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo("Rotation queue:")
    for question in queue:
        click.echo(f"  {question.queue_position}. [{question.id}] {question.text}")


@questions.command(name="edit")
@click.argument("question_id", type=int)
@click.option("--text", "-t", help="New question text")
@click.option("--active/--inactive", default=None, help="Activate or deactivate the question")
def questions_edit(question_id: int, text: str | None, active: bool | None) -> None:
    """Change the text or activation of QUESTION_ID."""
    if text is None and active is None:
        click.echo("Nothing to change: pass --text, --active or --inactive", err=True)
        sys.exit(1)
    asyncio.run(_questions_edit(question_id, text, active))


async def _questions_edit(question_id: int, text: str | None, active: bool | None) -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.questions.catalog import set_question_active, update_question_text

    try:
        async with async_session_maker() as session:
            if text is not None:
                question = await update_question_text(session, question_id, text)
            if active is not None:
                question = await set_question_active(session, question_id, active)
    except CheckinError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    inactive = "" if question.is_active else " (inactive)"
    click.echo(f"[{question.id}] {question.role.value}{inactive}: {question.text}")


# =============================================================================
# USER COMMANDS
# =============================================================================


@cli.group()
def users() -> None:
    """User management commands."""
    pass


@users.command(name="add")
@click.argument("user_id")
@click.option("--name", "-n", "display_name", default="", help="Display name")
@click.option("--tz", "timezone", help="IANA timezone, defaults to DEFAULT_TIMEZONE")
@click.option("--email", "-e", help="Email address")
def users_add(user_id: str, display_name: str, timezone: str | None, email: str | None) -> None:
    """Register USER_ID (a Slack user ID) for check-ins."""
    asyncio.run(_users_add(user_id, display_name, timezone, email))


async def _users_add(user_id: str, display_name: str, timezone: str | None, email: str | None) -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.users import create_user

    try:
        async with async_session_maker() as session:
            user = await create_user(
                session, user_id, display_name=display_name, email=email, timezone=timezone
            )
    except CheckinError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Added {user.slack_user_id} ({user.display_name}, {user.timezone})")


@users.command(name="deactivate")
@click.argument("user_id")
def users_deactivate(user_id: str) -> None:
    """Stop sending check-ins to USER_ID."""
    asyncio.run(_users_deactivate(user_id))


async def _users_deactivate(user_id: str) -> None:
    from pulse_checkin.db.database import async_session_maker
    from pulse_checkin.users import deactivate_user

    try:
        async with async_session_maker() as session:
            await deactivate_user(session, user_id)
    except CheckinError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(f"Deactivated {user_id}")


if __name__ == "__main__":
    cli()
