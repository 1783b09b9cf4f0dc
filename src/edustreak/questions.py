"""Question bank: approved-pool queries, anti-repetition selection and review."""
import logging
import random
from dataclasses import dataclass

from edustreak.errors import InvalidReviewState, NoQuestionsAvailable, QuestionNotFound
from edustreak.models import PublicOption, PublicQuestion, Question, QuestionStatus
from edustreak.repository import QuestionRepository

logger = logging.getLogger(__name__)

QUESTIONS_PER_STUDENT = 2
MIN_QUESTIONS_PER_TOPIC = 30
DEMAND_THRESHOLD_PERCENT = 90


@dataclass
class QuestionUsageStats:
    available: int
    seen: int
    unseen: int
    percent_seen: int
    bank_exhausted: bool


@dataclass
class QuestionDemand:
    needed: bool
    urgent: bool
    percent_seen: int
    remaining: int
    message: str


@dataclass
class PublishCheck:
    allowed: bool
    current: int
    required: int
    missing: int
    message: str


def public_view(question: Question, order: int) -> PublicQuestion:
    """Student-facing copy of a question, without correctness flags."""
    return PublicQuestion(
        id=question.id,
        order=order,
        text=question.text,
        options=[PublicOption(id=o.id, text=o.text) for o in question.options],
    )


class QuestionBank:
    def __init__(self, repo: QuestionRepository, rng: random.Random | None = None):
        self.repo = repo
        self.rng = rng or random.Random()

    async def select(
        self,
        course_id: str,
        topic_id: str,
        student_id: str,
        seen_ids: set[str],
        count: int,
    ) -> list[Question]:
        """Pick ``count`` approved questions, preferring ones the student has not seen.

        When the unseen pool is too small, falls back to the whole approved
        pool ordered by how often this student got each question (ties
        shuffled). Never returns more questions than the pool holds.
        """
        pool = await self.repo.list_approved(course_id, topic_id)
        if not pool:
            raise NoQuestionsAvailable(course_id, topic_id)

        unseen = [q for q in pool if q.id not in seen_ids]
        if len(unseen) >= count:
            selected = self.rng.sample(unseen, count)
        else:
            logger.info(
                "Only %d unseen questions for %s/%s (student %s), reusing least-used ones",
                len(unseen), course_id, topic_id, student_id,
            )
            shuffled = list(pool)
            self.rng.shuffle(shuffled)
            # sort is stable, so the shuffle decides ties
            shuffled.sort(key=lambda q: q.usage_for(student_id))
            selected = shuffled[:count]

        for q in selected:
            await self.repo.increment_usage(q.id, student_id)
        return selected

    async def usage_stats(self, course_id: str, topic_id: str, seen_ids: set[str]) -> QuestionUsageStats:
        pool = await self.repo.list_approved(course_id, topic_id)
        available = len(pool)
        seen = len({q.id for q in pool} & set(seen_ids))
        unseen = available - seen
        return QuestionUsageStats(
            available=available,
            seen=seen,
            unseen=unseen,
            percent_seen=(seen * 100) // available if available else 0,
            bank_exhausted=available > 0 and unseen == 0,
        )

    async def demand(
        self,
        course_id: str,
        topic_id: str,
        seen_ids: set[str],
        threshold_percent: int = DEMAND_THRESHOLD_PERCENT,
    ) -> QuestionDemand:
        stats = await self.usage_stats(course_id, topic_id, seen_ids)
        needed = stats.percent_seen >= threshold_percent
        if stats.bank_exhausted:
            message = "No new questions left for this topic"
        elif needed:
            message = f"Only {stats.unseen} new question(s) left for this topic"
        else:
            message = "Enough new questions are available"
        return QuestionDemand(
            needed=needed,
            urgent=stats.bank_exhausted,
            percent_seen=stats.percent_seen,
            remaining=stats.unseen,
            message=message,
        )

    async def can_publish_topic(self, course_id: str, topic_id: str, enrolled_students: int) -> PublishCheck:
        required = max(enrolled_students * QUESTIONS_PER_STUDENT, MIN_QUESTIONS_PER_TOPIC)
        current = len(await self.repo.list_approved(course_id, topic_id))
        missing = max(0, required - current)
        if missing == 0:
            message = "The topic has the minimum number of approved questions"
        else:
            message = f"{missing} more approved question(s) needed ({current} of {required})"
        return PublishCheck(current >= required, current, required, missing, message)

    async def enough_for_quota(
        self, course_id: str, topic_id: str, required_attempts: int, per_quiz: int = 10,
    ) -> bool:
        available = len(await self.repo.list_approved(course_id, topic_id))
        return available >= required_attempts * per_quiz

    async def pending(self, course_id: str) -> list[Question]:
        return await self.repo.list_by_status(course_id, QuestionStatus.PENDING_REVIEW)

    async def approve(self, question_id: str, notes: str | None = None) -> Question:
        return await self._review(question_id, QuestionStatus.APPROVED, notes)

    async def reject(self, question_id: str, notes: str | None = None) -> Question:
        return await self._review(question_id, QuestionStatus.REJECTED, notes)

    async def _review(self, question_id: str, status: QuestionStatus, notes: str | None) -> Question:
        question = await self.repo.get(question_id)
        if question is None:
            raise QuestionNotFound(question_id)
        if question.status != QuestionStatus.PENDING_REVIEW:
            raise InvalidReviewState(question_id, question.status.value)
        question.status = status
        question.review_notes = notes
        await self.repo.put(question)
        logger.info("Question %s marked %s", question_id, status.value)
        return question
