import asyncio
import random
from datetime import datetime, timezone

import pytest

from edustreak.clock import FixedClock
from edustreak.courses import create_course, enroll_student
from edustreak.models import Option, Question, QuestionStatus
from edustreak.repository import InMemoryStore
from edustreak.sessions import QuizService

START = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_db(tmp_path):
    """Provide a temporary SQLite database path for tests."""
    db_path = str(tmp_path / "test_edustreak.db")
    return db_path


def build_question(qid, topic_id="t1", course_id="c1", correct=0,
                   status=QuestionStatus.APPROVED, explanation="Because."):
    return Question(
        id=qid,
        course_id=course_id,
        topic_id=topic_id,
        text=f"Question {qid}?",
        options=[Option(i, f"option {i}", i == correct) for i in range(4)],
        status=status,
        explanation=explanation,
    )


@pytest.fixture
def make_question():
    return build_question


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def store():
    return InMemoryStore()


async def _setup_course(store, now):
    # 3 topics over 9 days: 3 days and 5 quizzes each
    await create_course(store, "c1", [("t1", "Variables"), ("t2", "Loops"), ("t3", "Functions")], 9, now)
    for i in range(12):
        await store.questions.put(build_question(f"t1-{i}", "t1"))
    for i in range(5):
        await store.questions.put(build_question(f"t2-{i}", "t2"))
    await enroll_student(store, "c1", "s1", now)
    await store.explanations.mark_viewed("s1", "t1", now)
    await store.explanations.mark_viewed("s1", "t2", now)


@pytest.fixture
def course(store, clock):
    """Course c1 with student s1 enrolled and the t1/t2 explanations read."""
    asyncio.run(_setup_course(store, clock.now()))
    return store


@pytest.fixture
def service(course, clock):
    return QuizService(course, clock=clock, rng=random.Random(7))
