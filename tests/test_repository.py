"""Tests for the in-memory store."""
import asyncio
from dataclasses import replace
from datetime import datetime, timezone

import pytest

from edustreak.errors import AlreadyFinalized, ConcurrentUpdate
from edustreak.models import (
    Enrollment, QuizSession, SessionQuestion, SessionState, TopicCompletionState,
)
from edustreak.repository import InMemoryStore

T = datetime(2024, 1, 1, tzinfo=timezone.utc)


def test_enrollment_versions():
    store = InMemoryStore()

    async def scenario():
        first = await store.enrollments.put(Enrollment("c1", "s1"))
        assert first.version == 1
        second = await store.enrollments.put(replace(first, lives_current=4))
        assert second.version == 2
        with pytest.raises(ConcurrentUpdate):
            await store.enrollments.put(replace(first, lives_current=3))
        with pytest.raises(ConcurrentUpdate):
            await store.enrollments.put(Enrollment("c1", "s1"))
        return await store.enrollments.get("c1", "s1")

    stored = asyncio.run(scenario())
    assert stored.lives_current == 4
    assert stored.version == 2


def test_returned_records_are_copies(make_question):
    store = InMemoryStore()

    async def scenario():
        await store.questions.put(make_question("q1"))
        q = await store.questions.get("q1")
        q.text = "changed"
        return await store.questions.get("q1")

    assert asyncio.run(scenario()).text == "Question q1?"


def test_commit_finalization_refuses_stale_enrollment():
    store = InMemoryStore()
    session = QuizSession("quiz", "c1", "t1", "s1", [SessionQuestion("q1", 1)], T)
    state = TopicCompletionState("c1", "s1", "t1", seen_question_ids={"q1"})

    async def scenario():
        stale = await store.enrollments.put(Enrollment("c1", "s1"))
        await store.enrollments.put(replace(stale, lives_current=1))
        await store.sessions.put(session)
        done = replace(session, state=SessionState.FINALIZED)
        with pytest.raises(ConcurrentUpdate):
            await store.commit_finalization(replace(stale, lives_current=2), done, state)
        return (
            await store.sessions.get("quiz"),
            await store.topic_states.get("c1", "s1", "t1"),
            await store.enrollments.get("c1", "s1"),
        )

    stored_session, stored_state, enrollment = asyncio.run(scenario())
    assert stored_session.state == SessionState.IN_PROGRESS
    assert stored_state is None
    assert enrollment.lives_current == 1


def test_commit_finalization_refuses_finalized_session():
    store = InMemoryStore()
    session = QuizSession("quiz", "c1", "t1", "s1", [], T, state=SessionState.FINALIZED)

    async def scenario():
        e = await store.enrollments.put(Enrollment("c1", "s1"))
        await store.sessions.put(session)
        with pytest.raises(AlreadyFinalized):
            await store.commit_finalization(e, session, TopicCompletionState("c1", "s1", "t1"))
        return await store.enrollments.get("c1", "s1")

    assert asyncio.run(scenario()).version == 1


def test_list_sessions_for_student():
    store = InMemoryStore()

    async def scenario():
        await store.sessions.put(QuizSession("a", "c1", "t1", "s1", [], T))
        await store.sessions.put(QuizSession("b", "c1", "t2", "s1", [], T))
        await store.sessions.put(QuizSession("c", "c1", "t1", "s2", [], T))
        return (
            await store.sessions.list_for_student("s1"),
            await store.sessions.list_for_student("s1", "c1", "t1"),
        )

    everything, topic = asyncio.run(scenario())
    assert {s.id for s in everything} == {"a", "b"}
    assert [s.id for s in topic] == ["a"]
