"""Tests for database initialization and the SQLite store."""
import asyncio
import sqlite3
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from edustreak.db import SqliteStore, get_connection, init_db, transaction
from edustreak.errors import AlreadyFinalized, ConcurrentUpdate, QuestionNotFound
from edustreak.models import (
    Enrollment, EvaluatedAnswer, QuestionStatus, QuizSession, SessionQuestion, SessionState,
    TopicCompletionState, XPBreakdown,
)
from edustreak.schedule import build_schedule

T = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def sqlite_store(tmp_db):
    init_db(tmp_db)
    return SqliteStore(tmp_db)


def make_session(state=SessionState.IN_PROGRESS):
    return QuizSession("quiz", "c1", "t1", "s1", [SessionQuestion("q1", 1), SessionQuestion("q2", 2)], T,
                       state=state)


def test_init_db_creates_tables(tmp_db):
    init_db(tmp_db)
    conn = get_connection(tmp_db)
    cursor = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    )
    tables = {row[0] for row in cursor.fetchall()}
    expected = {
        "questions", "question_usage", "enrollments", "quiz_sessions",
        "course_schedules", "topic_windows", "explanations_viewed", "topic_states",
    }
    assert expected.issubset(tables)
    conn.close()


def test_init_db_is_idempotent(tmp_db):
    init_db(tmp_db)
    init_db(tmp_db)  # should not raise
    conn = get_connection(tmp_db)
    cursor = conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    assert len(cursor.fetchall()) > 0
    conn.close()


def test_transaction_rolls_back(tmp_db):
    init_db(tmp_db)
    with pytest.raises(RuntimeError):
        with transaction(tmp_db) as conn:
            conn.execute("INSERT INTO explanations_viewed (student_id, topic_id) VALUES ('s1', 't1')")
            raise RuntimeError("abort")
    conn = get_connection(tmp_db)
    assert conn.execute("SELECT COUNT(*) FROM explanations_viewed").fetchone()[0] == 0
    conn.close()


def test_lives_check_constraint(tmp_db):
    init_db(tmp_db)
    conn = get_connection(tmp_db)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute(
            "INSERT INTO enrollments (course_id, student_id, lives_current, lives_max) VALUES ('c1', 's1', 6, 5)"
        )
    conn.close()


def test_question_round_trip_and_usage(sqlite_store, make_question):
    async def scenario():
        await sqlite_store.questions.put(make_question("q1", correct=2))
        await sqlite_store.questions.put(make_question("q2", status=QuestionStatus.PENDING_REVIEW))
        await sqlite_store.questions.increment_usage("q1", "s1")
        await sqlite_store.questions.increment_usage("q1", "s1")
        with pytest.raises(QuestionNotFound):
            await sqlite_store.questions.increment_usage("nope", "s1")
        return (
            await sqlite_store.questions.get("q1"),
            await sqlite_store.questions.list_approved("c1", "t1"),
            await sqlite_store.questions.list_by_status("c1", QuestionStatus.PENDING_REVIEW),
        )

    q1, approved, pending = asyncio.run(scenario())
    assert q1.correct_index == 2
    assert q1.usage_for("s1") == 2
    assert [q.id for q in approved] == ["q1"]
    assert [q.id for q in pending] == ["q2"]


def test_question_update_keeps_usage(sqlite_store, make_question):
    async def scenario():
        q = make_question("q1", status=QuestionStatus.PENDING_REVIEW)
        await sqlite_store.questions.put(q)
        await sqlite_store.questions.increment_usage("q1", "s1")
        q.status = QuestionStatus.APPROVED
        await sqlite_store.questions.put(q)
        return await sqlite_store.questions.get("q1")

    q = asyncio.run(scenario())
    assert q.status == QuestionStatus.APPROVED
    assert q.usage_for("s1") == 1


def test_enrollment_conditional_write(sqlite_store):
    async def scenario():
        first = await sqlite_store.enrollments.put(Enrollment("c1", "s1", last_regen_at=T))
        second = await sqlite_store.enrollments.put(replace(first, lives_current=3))
        with pytest.raises(ConcurrentUpdate):
            await sqlite_store.enrollments.put(replace(first, lives_current=1))
        with pytest.raises(ConcurrentUpdate):
            await sqlite_store.enrollments.put(Enrollment("c1", "s1"))
        return second, await sqlite_store.enrollments.get("c1", "s1")

    second, stored = asyncio.run(scenario())
    assert second.version == 2
    assert stored == second
    assert stored.last_regen_at == T


def test_schedule_round_trip(sqlite_store):
    schedule = build_schedule("c1", [("t1", "Variables"), "t2", "t3"], 10, T)

    async def scenario():
        await sqlite_store.schedules.put(schedule)
        await sqlite_store.schedules.put(schedule)
        return await sqlite_store.schedules.get("c1"), await sqlite_store.schedules.get("other")

    stored, missing = asyncio.run(scenario())
    assert stored == schedule
    assert missing is None


def test_session_round_trip(sqlite_store):
    session = make_session(SessionState.FINALIZED)
    session.ended_at = T + timedelta(minutes=5)
    session.answers = [EvaluatedAnswer("q1", 0, 12, True), EvaluatedAnswer("q2", 3, 8, False)]
    session.correct_count, session.incorrect_count = 1, 1
    session.xp = XPBreakdown(10, 10, 0, 0)

    async def scenario():
        await sqlite_store.sessions.put(session)
        return await sqlite_store.sessions.get("quiz"), await sqlite_store.sessions.list_for_student("s1", "c1")

    stored, listed = asyncio.run(scenario())
    assert stored == session
    assert [s.id for s in listed] == ["quiz"]


def test_topic_state_and_explanations(sqlite_store):
    state = TopicCompletionState("c1", "s1", "t1", attempts_made=2, approved=True,
                                 last_attempt_at=T, seen_question_ids={"q1", "q2"})

    async def scenario():
        await sqlite_store.topic_states.put(state)
        await sqlite_store.explanations.mark_viewed("s1", "t1", T)
        return (
            await sqlite_store.topic_states.get("c1", "s1", "t1"),
            await sqlite_store.topic_states.list_for_student("c1", "s1"),
            await sqlite_store.explanations.is_viewed("s1", "t1"),
            await sqlite_store.explanations.is_viewed("s1", "t2"),
        )

    stored, listed, viewed, not_viewed = asyncio.run(scenario())
    assert stored == state
    assert len(listed) == 1
    assert viewed and not not_viewed


def test_commit_finalization_is_atomic(sqlite_store):
    async def scenario():
        e = await sqlite_store.enrollments.put(Enrollment("c1", "s1"))
        await sqlite_store.enrollments.put(replace(e, lives_current=4))
        await sqlite_store.sessions.put(make_session())
        with pytest.raises(ConcurrentUpdate):
            await sqlite_store.commit_finalization(
                replace(e, lives_current=2), make_session(SessionState.FINALIZED),
                TopicCompletionState("c1", "s1", "t1"),
            )
        return (
            await sqlite_store.enrollments.get("c1", "s1"),
            await sqlite_store.sessions.get("quiz"),
            await sqlite_store.topic_states.get("c1", "s1", "t1"),
        )

    enrollment, session, state = asyncio.run(scenario())
    assert enrollment.lives_current == 4
    assert session.state == SessionState.IN_PROGRESS
    assert state is None


def test_commit_finalization_once(sqlite_store):
    async def scenario():
        e = await sqlite_store.enrollments.put(Enrollment("c1", "s1"))
        await sqlite_store.sessions.put(make_session())
        done = make_session(SessionState.FINALIZED)
        state = TopicCompletionState("c1", "s1", "t1", attempts_made=1)
        saved = await sqlite_store.commit_finalization(replace(e, lives_current=3), done, state)
        with pytest.raises(AlreadyFinalized):
            await sqlite_store.commit_finalization(replace(saved, lives_current=1), done, state)
        return await sqlite_store.enrollments.get("c1", "s1")

    stored = asyncio.run(scenario())
    assert stored.lives_current == 3
    assert stored.version == 2
