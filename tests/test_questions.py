import asyncio
import random

import pytest

from edustreak.errors import InvalidReviewState, NoQuestionsAvailable, QuestionNotFound
from edustreak.models import QuestionStatus
from edustreak.questions import QuestionBank, public_view
from edustreak.repository import InMemoryQuestionRepository


def fill(repo, make_question, count, topic_id="t1", status=QuestionStatus.APPROVED):
    async def _fill():
        for i in range(count):
            await repo.put(make_question(f"{topic_id}-{i}", topic_id, status=status))
    asyncio.run(_fill())


@pytest.fixture
def repo():
    return InMemoryQuestionRepository()


@pytest.fixture
def bank(repo):
    return QuestionBank(repo, random.Random(3))


def test_select_prefers_unseen(repo, bank, make_question):
    fill(repo, make_question, 20)
    seen = {f"t1-{i}" for i in range(10)}
    picked = asyncio.run(bank.select("c1", "t1", "s1", seen, 10))
    assert len(picked) == 10
    assert not {q.id for q in picked} & seen


def test_select_falls_back_to_whole_pool(repo, bank, make_question):
    fill(repo, make_question, 5)
    picked = asyncio.run(bank.select("c1", "t1", "s1", set(), 10))
    assert len(picked) == 5
    assert len({q.id for q in picked}) == 5


def test_fallback_picks_least_used(repo, bank, make_question):
    fill(repo, make_question, 6)

    async def scenario():
        for qid in ("t1-0", "t1-1", "t1-2"):
            await repo.increment_usage(qid, "s1")
        seen = {f"t1-{i}" for i in range(6)}
        return await bank.select("c1", "t1", "s1", seen, 3)

    picked = asyncio.run(scenario())
    assert {q.id for q in picked} == {"t1-3", "t1-4", "t1-5"}


def test_select_increments_usage(repo, bank, make_question):
    fill(repo, make_question, 4)

    async def scenario():
        picked = await bank.select("c1", "t1", "s1", set(), 2)
        return picked, [await repo.get(q.id) for q in picked]

    picked, stored = asyncio.run(scenario())
    assert all(q.usage_for("s1") == 1 for q in stored)
    assert all(q.usage_for("s2") == 0 for q in stored)


def test_select_ignores_unapproved_and_other_topics(repo, bank, make_question):
    fill(repo, make_question, 3, status=QuestionStatus.PENDING_REVIEW)
    fill(repo, make_question, 3, topic_id="t2")
    with pytest.raises(NoQuestionsAvailable):
        asyncio.run(bank.select("c1", "t1", "s1", set(), 10))


def test_public_view_hides_correct_flags(make_question):
    view = public_view(make_question("q1", correct=2), 4)
    assert view.order == 4
    assert len(view.options) == 4
    assert not any(hasattr(o, "is_correct") for o in view.options)


def test_usage_stats_and_demand(repo, bank, make_question):
    fill(repo, make_question, 10)
    seen = {f"t1-{i}" for i in range(9)} | {"other"}
    stats = asyncio.run(bank.usage_stats("c1", "t1", seen))
    assert (stats.available, stats.seen, stats.unseen, stats.percent_seen) == (10, 9, 1, 90)
    assert not stats.bank_exhausted

    demand = asyncio.run(bank.demand("c1", "t1", seen))
    assert demand.needed
    assert not demand.urgent
    assert demand.remaining == 1


def test_demand_when_bank_exhausted(repo, bank, make_question):
    fill(repo, make_question, 2)
    demand = asyncio.run(bank.demand("c1", "t1", {"t1-0", "t1-1"}))
    assert demand.urgent
    assert demand.remaining == 0


def test_can_publish_topic_minimum(repo, bank, make_question):
    fill(repo, make_question, 25)
    check = asyncio.run(bank.can_publish_topic("c1", "t1", enrolled_students=5))
    assert not check.allowed
    assert check.required == 30
    assert check.missing == 5


def test_can_publish_topic_scales_with_students(repo, bank, make_question):
    fill(repo, make_question, 30)
    check = asyncio.run(bank.can_publish_topic("c1", "t1", enrolled_students=20))
    assert check.required == 40
    assert not check.allowed
    assert asyncio.run(bank.can_publish_topic("c1", "t1", enrolled_students=15)).allowed


def test_enough_for_quota(repo, bank, make_question):
    fill(repo, make_question, 30)
    assert asyncio.run(bank.enough_for_quota("c1", "t1", 3))
    assert not asyncio.run(bank.enough_for_quota("c1", "t1", 5))


def test_review_workflow(repo, bank, make_question):
    fill(repo, make_question, 2, status=QuestionStatus.PENDING_REVIEW)

    async def scenario():
        assert len(await bank.pending("c1")) == 2
        await bank.approve("t1-0")
        await bank.reject("t1-1", "ambiguous")
        return await repo.get("t1-0"), await repo.get("t1-1"), await bank.pending("c1")

    approved, rejected, pending = asyncio.run(scenario())
    assert approved.status == QuestionStatus.APPROVED
    assert rejected.status == QuestionStatus.REJECTED
    assert rejected.review_notes == "ambiguous"
    assert pending == []


def test_review_twice_fails(repo, bank, make_question):
    fill(repo, make_question, 1)
    with pytest.raises(InvalidReviewState):
        asyncio.run(bank.reject("t1-0"))


def test_review_unknown_question(bank):
    with pytest.raises(QuestionNotFound):
        asyncio.run(bank.approve("missing"))
