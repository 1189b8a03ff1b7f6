"""Tests for the session engine state machine and completion write-through."""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from pulse_checkin.checkins.store import find_check_in, get_responses_for_check_in
from pulse_checkin.db.models import CheckIn, QuestionRole
from pulse_checkin.exceptions import CheckinConfigurationError, DeliveryError
from pulse_checkin.questions.catalog import (
    create_question,
    get_core_question_by_role,
    list_rotating_questions,
)
from pulse_checkin.sessions.engine import (
    COMPLETION_MESSAGE,
    SAVE_FAILED_MESSAGE,
    LaunchResult,
)
from pulse_checkin.sessions.session import Step
from pulse_checkin.slack.messages import FALLBACK_ROTATING_QUESTION, RATING_CHOICES
from pulse_checkin.users import create_user
from pulse_checkin.workspace import (
    advance_rotation_for_week,
    advance_rotation_offset,
    get_workspace_config,
)

THURSDAY_1402_NY = datetime(2026, 10, 15, 18, 2, tzinfo=timezone.utc)
WEEK_START = date(2026, 10, 12)
HANDLE = "U001"


async def _check_in(session_factory, user_id):
    async with session_factory() as session:
        return await find_check_in(session, user_id, WEEK_START)


async def _answer_all(engine, rating="4"):
    assert await engine.submit_rating(HANDLE, rating)
    assert await engine.submit_text(HANDLE, "Shipped the release")
    assert await engine.submit_text(HANDLE, "Too many meetings")
    return await engine.submit_text(HANDLE, "More focus time")


@pytest.mark.asyncio
class TestLaunch:
    async def test_launch_sends_rating_question(self, session_engine, messenger, session_factory, seeded, user):
        result = await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert result.status == LaunchResult.STARTED
        assert result.success
        assert session_engine.store.get(HANDLE).step is Step.RATING
        messenger.send_question_prompt.assert_awaited_once_with(
            HANDLE,
            QuestionRole.RATING,
            "How would you rate your week?",
            choices=RATING_CHOICES,
            number=1,
            preface=None,
        )

        check_in = await _check_in(session_factory, user.id)
        assert check_in.id == result.check_in_id
        assert not check_in.is_completed

    async def test_unknown_user_is_created(self, session_engine, session_factory, seeded):
        result = await session_engine.launch("U_NEW", now=THURSDAY_1402_NY)
        assert result.status == LaunchResult.STARTED
        assert session_engine.has_session("U_NEW", result.check_in_id)

    async def test_missing_core_question_is_fatal(self, session_engine, messenger, session_factory, seeded, user):
        """Deactivating the only went_well question leaves launch unable to run."""
        async with session_factory() as session:
            went_well = await get_core_question_by_role(session, QuestionRole.WENT_WELL)
            went_well.is_active = False
            await session.commit()

        with pytest.raises(CheckinConfigurationError) as exc_info:
            await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert exc_info.value.missing_roles == ["went_well"]
        messenger.send_question_prompt.assert_not_awaited()
        messenger.send_plain_message.assert_not_awaited()
        assert not session_engine.has_session(HANDLE)
        assert await _check_in(session_factory, user.id) is None

    async def test_completed_week_is_not_resent(self, session_engine, messenger, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        await _answer_all(session_engine)
        messenger.send_question_prompt.reset_mock()

        result = await session_engine.launch(HANDLE, now=THURSDAY_1402_NY + timedelta(hours=1))

        assert result.status == LaunchResult.ALREADY_COMPLETED
        assert not result.success
        messenger.send_question_prompt.assert_not_awaited()
        assert not session_engine.has_session(HANDLE)

    async def test_relaunch_replaces_session_for_same_check_in(self, session_engine, seeded, user):
        first = await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        await session_engine.submit_rating(HANDLE, 3)
        old_session = session_engine.store.get(HANDLE)

        second = await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert second.check_in_id == first.check_in_id
        new_session = session_engine.store.get(HANDLE)
        assert new_session is not old_session
        assert new_session.step is Step.RATING
        assert len(session_engine.store) == 1

    async def test_relaunch_without_replace_keeps_live_session(self, session_engine, messenger, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        await session_engine.submit_rating(HANDLE, 3)
        live = session_engine.store.get(HANDLE)

        result = await session_engine.launch(HANDLE, now=THURSDAY_1402_NY, replace=False)

        assert result.status == LaunchResult.IN_PROGRESS
        assert session_engine.store.get(HANDLE) is live
        assert live.step is Step.WENT_WELL
        assert messenger.send_question_prompt.await_count == 2

    async def test_delivery_failure_keeps_session(self, session_engine, messenger, seeded, user):
        messenger.send_question_prompt.side_effect = DeliveryError("channel_not_found", HANDLE)

        result = await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert result.status == LaunchResult.STARTED
        assert session_engine.has_session(HANDLE)

    async def test_rotating_question_follows_offset(self, session_engine, messenger, session_factory, seeded, user):
        async with session_factory() as session:
            await advance_rotation_offset(session)
            expected = (await list_rotating_questions(session))[1]

        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert session_engine.store.get(HANDLE).questions.rotating.id == expected.id


@pytest.mark.asyncio
class TestAnswers:
    async def test_rating_advances_to_went_well_without_writing(
        self, session_engine, messenger, session_factory, seeded, user
    ):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert await session_engine.submit_rating(HANDLE, "4")

        assert session_engine.store.get(HANDLE).step is Step.WENT_WELL
        messenger.send_question_prompt.assert_awaited_with(
            HANDLE,
            QuestionRole.WENT_WELL,
            "What went well this week?",
            choices=None,
            number=2,
            preface="You rated your week a *4/5*",
        )
        check_in = await _check_in(session_factory, user.id)
        assert check_in.rating is None
        assert check_in.completed_at is None

    async def test_steps_advance_one_at_a_time(self, session_engine, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        session = session_engine.store.get(HANDLE)

        await session_engine.submit_rating(HANDLE, 5)
        assert session.step is Step.WENT_WELL
        await session_engine.submit_text(HANDLE, "one")
        assert session.step is Step.DIDNT_GO_WELL
        await session_engine.submit_text(HANDLE, "two")
        assert session.step is Step.ROTATING
        assert session.answers == {Step.RATING: 5, Step.WENT_WELL: "one", Step.DIDNT_GO_WELL: "two"}

    async def test_text_during_rating_step_is_ignored(self, session_engine, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert not await session_engine.submit_text(HANDLE, "4")

        assert session_engine.store.get(HANDLE).step is Step.RATING

    async def test_rating_after_rating_step_is_ignored(self, session_engine, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        await session_engine.submit_rating(HANDLE, 2)

        assert not await session_engine.submit_rating(HANDLE, 5)

        session = session_engine.store.get(HANDLE)
        assert session.step is Step.WENT_WELL
        assert session.answers[Step.RATING] == 2

    async def test_out_of_range_rating_rejected(self, session_engine, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert not await session_engine.submit_rating(HANDLE, "9")

        assert session_engine.store.get(HANDLE).step is Step.RATING

    async def test_blank_text_is_ignored(self, session_engine, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        await session_engine.submit_rating(HANDLE, 3)

        assert not await session_engine.submit_text(HANDLE, "   ")

        assert session_engine.store.get(HANDLE).step is Step.WENT_WELL

    async def test_answer_without_session_changes_nothing(self, session_engine, messenger, session_factory, seeded):
        assert not await session_engine.submit_text("U_STRANGER", "hello there")
        assert not await session_engine.submit_rating("U_STRANGER", 4)

        messenger.send_question_prompt.assert_not_awaited()
        messenger.send_plain_message.assert_not_awaited()
        async with session_factory() as session:
            assert (await session.execute(select(func.count(CheckIn.id)))).scalar_one() == 0


@pytest.mark.asyncio
class TestCompletion:
    async def test_final_answer_writes_everything_and_ends_session(
        self, session_engine, messenger, session_factory, seeded, user
    ):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        rotating_id = session_engine.store.get(HANDLE).questions.rotating.id

        assert await _answer_all(session_engine)

        check_in = await _check_in(session_factory, user.id)
        assert check_in.rating == 4
        assert check_in.went_well == "Shipped the release"
        assert check_in.didnt_go_well == "Too many meetings"
        assert check_in.completed_at is not None
        async with session_factory() as session:
            responses = await get_responses_for_check_in(session, check_in.id)
        assert [(r.question_id, r.response_text) for r in responses] == [(rotating_id, "More focus time")]

        assert not session_engine.has_session(HANDLE)
        messenger.send_plain_message.assert_awaited_once_with(HANDLE, COMPLETION_MESSAGE)

    async def test_no_partial_write_before_last_answer(self, session_engine, session_factory, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        await session_engine.submit_rating(HANDLE, 4)
        await session_engine.submit_text(HANDLE, "one")
        await session_engine.submit_text(HANDLE, "two")

        check_in = await _check_in(session_factory, user.id)
        assert (check_in.rating, check_in.went_well, check_in.didnt_go_well) == (None, None, None)
        async with session_factory() as session:
            assert await get_responses_for_check_in(session, check_in.id) == []

    async def test_fallback_rotating_question_without_queue(
        self, session_engine, messenger, session_factory, user
    ):
        async with session_factory() as session:
            await create_question(session, "Rate it", QuestionRole.RATING)
            await create_question(session, "Good?", QuestionRole.WENT_WELL)
            await create_question(session, "Bad?", QuestionRole.DIDNT_GO_WELL)

        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        await session_engine.submit_rating(HANDLE, 4)
        await session_engine.submit_text(HANDLE, "one")
        await session_engine.submit_text(HANDLE, "two")

        last_prompt = messenger.send_question_prompt.await_args
        assert last_prompt.args[1] == QuestionRole.ROTATING
        assert last_prompt.args[2] == FALLBACK_ROTATING_QUESTION

        assert await session_engine.submit_text(HANDLE, "three")
        check_in = await _check_in(session_factory, user.id)
        assert check_in.is_completed
        async with session_factory() as session:
            assert await get_responses_for_check_in(session, check_in.id) == []

    async def test_save_failure_keeps_session_for_retry(
        self, session_engine, messenger, session_factory, seeded, user
    ):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        failing = AsyncMock(side_effect=SQLAlchemyError("database is locked"))
        with patch("pulse_checkin.sessions.engine.complete_check_in", failing):
            assert not await _answer_all(session_engine)

        assert session_engine.has_session(HANDLE)
        assert session_engine.store.get(HANDLE).step is Step.ROTATING
        messenger.send_plain_message.assert_awaited_once_with(HANDLE, SAVE_FAILED_MESSAGE)
        assert not (await _check_in(session_factory, user.id)).is_completed

        # Resending the last answer completes normally
        assert await session_engine.submit_text(HANDLE, "More focus time")
        assert (await _check_in(session_factory, user.id)).is_completed
        assert not session_engine.has_session(HANDLE)


@pytest.mark.asyncio
class TestExpiry:
    async def test_idle_sessions_expire(self, session_engine, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert session_engine.expire_idle_sessions(THURSDAY_1402_NY + timedelta(hours=23)) == []
        expired = session_engine.expire_idle_sessions(THURSDAY_1402_NY + timedelta(hours=25))

        assert [s.user_handle for s in expired] == [HANDLE]
        assert not session_engine.has_session(HANDLE)

    async def test_rating_after_expiry_is_ignored_silently(self, session_engine, messenger, session_factory, seeded, user):
        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)
        session_engine.expire_idle_sessions(THURSDAY_1402_NY + timedelta(hours=25))
        messenger.send_question_prompt.reset_mock()

        assert not await session_engine.submit_rating(HANDLE, "4")

        messenger.send_plain_message.assert_not_awaited()
        messenger.send_question_prompt.assert_not_awaited()
        assert (await _check_in(session_factory, user.id)).rating is None


@pytest.mark.asyncio
class TestRotationByLocalWeek:
    async def test_user_ahead_of_utc_gets_their_weeks_question(self, session_engine, session_factory, seeded):
        """Monday 11:00 in Auckland is still Sunday in UTC; the local week's question is used."""
        async with session_factory() as session:
            await advance_rotation_for_week(session, WEEK_START)
            await create_user(session, "U_AKL", display_name="Aroha", timezone="Pacific/Auckland")
            queue = await list_rotating_questions(session)

        await session_engine.launch("U_AKL", now=datetime(2026, 10, 18, 22, 0, tzinfo=timezone.utc))

        assert session_engine.store.get("U_AKL").questions.rotating.id == queue[1].id
        async with session_factory() as session:
            assert (await get_workspace_config(session)).rotation_offset == 0

    async def test_same_utc_week_users_share_offset(self, session_engine, session_factory, seeded, user):
        async with session_factory() as session:
            await advance_rotation_for_week(session, WEEK_START)
            queue = await list_rotating_questions(session)

        await session_engine.launch(HANDLE, now=THURSDAY_1402_NY)

        assert session_engine.store.get(HANDLE).questions.rotating.id == queue[0].id
