"""Quiz session lifecycle: start, finalize and the read-only views over a session.

A session goes ``in_progress -> finalized`` exactly once. Every step that
reads and then writes an enrollment runs under a per-(course, student)
lock, and finalization commits the lives debit, the finalized session and
the topic state as one unit, so a retried finalize can only ever see
AlreadyFinalized.
"""
import asyncio
import logging
import random
import uuid
from dataclasses import replace
from datetime import datetime

from edustreak import lives, progress, scoring
from edustreak.clock import SystemClock
from edustreak.config import Settings
from edustreak.errors import (
    AlreadyFinalized, ExplanationNotViewed, InvalidEnrollmentState, InvalidState,
    NoLivesAvailable, NotEnrolled, NotOwner, QuizNotFound, TopicNotInCourse,
)
from edustreak.locks import KeyedLock
from edustreak.models import (
    CourseProgress, Enrollment, EnrollmentStatus, LivesStatus, MistakeReview, Question,
    QuizResult, QuizSession, RevisionItem, SessionQuestion, SessionState, StartedQuiz,
    SubmittedAnswer, TopicCompletionState,
)
from edustreak.questions import QuestionBank, public_view
from edustreak.repository import Store
from edustreak.review import build_mistake_review, build_revision
from edustreak.schedule import Eligibility, IneligibleReason, check_eligibility, course_progress

logger = logging.getLogger(__name__)

QUIZ_ALLOWED_STATUSES = (EnrollmentStatus.APPROVED, EnrollmentStatus.IN_PROGRESS)


class QuizService:
    def __init__(
        self,
        store: Store,
        clock=None,
        settings: Settings | None = None,
        rng: random.Random | None = None,
        locks: KeyedLock | None = None,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.settings = settings or Settings()
        self.bank = QuestionBank(store.questions, rng)
        self.locks = locks or KeyedLock()

    def _enrollment_lock(self, course_id: str, student_id: str):
        return self.locks.hold((course_id, student_id), self.settings.lock_timeout_seconds)

    async def _load_enrollment(self, course_id: str, student_id: str) -> Enrollment:
        enrollment = await self.store.enrollments.get(course_id, student_id)
        if enrollment is None:
            raise NotEnrolled(course_id, student_id)
        return enrollment

    async def _regenerate(self, enrollment: Enrollment, now: datetime) -> Enrollment:
        updated = lives.regenerate(enrollment, self.settings.regen_interval_minutes, now)
        if updated is enrollment:
            return enrollment
        logger.debug(
            "Lives for %s/%s: %d -> %d",
            enrollment.course_id, enrollment.student_id, enrollment.lives_current, updated.lives_current,
        )
        return await self.store.enrollments.put(updated)

    async def _load_questions(self, question_ids: list[str]) -> dict[str, Question]:
        # one concurrent batch, then join
        found = await asyncio.gather(*(self.store.questions.get(qid) for qid in set(question_ids)))
        return {q.id: q for q in found if q is not None}

    async def _load_owned_session(self, quiz_id: str, student_id: str) -> QuizSession:
        session = await self.store.sessions.get(quiz_id)
        if session is None:
            raise QuizNotFound(quiz_id)
        if session.student_id != student_id:
            raise NotOwner(quiz_id)
        return session

    # --- start ---

    async def start_quiz(self, course_id: str, topic_id: str, student_id: str) -> StartedQuiz:
        async with self._enrollment_lock(course_id, student_id):
            now = self.clock.now()
            enrollment = await self._load_enrollment(course_id, student_id)
            if enrollment.status not in QUIZ_ALLOWED_STATUSES:
                raise InvalidEnrollmentState(enrollment.status.value)

            enrollment = await self._regenerate(enrollment, now)
            if enrollment.lives_current <= 0:
                raise NoLivesAvailable(
                    lives.minutes_to_next_life(enrollment, self.settings.regen_interval_minutes, now)
                )

            schedule = await self.store.schedules.get(course_id)
            if schedule is None or topic_id not in schedule.windows:
                raise TopicNotInCourse(course_id, topic_id)

            state = await self.store.topic_states.get(course_id, student_id, topic_id)
            check_eligibility(schedule, topic_id, state, now, self.settings.cooldown_days).raise_for_reason()

            if not await self.store.explanations.is_viewed(student_id, topic_id):
                raise ExplanationNotViewed(topic_id)

            seen = state.seen_question_ids if state else set()
            selected = await self.bank.select(
                course_id, topic_id, student_id, seen, self.settings.questions_per_quiz,
            )

            session = QuizSession(
                id=uuid.uuid4().hex,
                course_id=course_id,
                topic_id=topic_id,
                student_id=student_id,
                questions=[SessionQuestion(q.id, i + 1) for i, q in enumerate(selected)],
                started_at=now,
                attempt_number=enrollment.attempts_completed + 1,
            )
            await self.store.sessions.put(session)

        logger.info(
            "Started quiz %s for %s on %s/%s (attempt %d, %d questions)",
            session.id, student_id, course_id, topic_id, session.attempt_number, len(selected),
        )
        return StartedQuiz(
            session_id=session.id,
            attempt_number=session.attempt_number,
            questions=[public_view(q, i + 1) for i, q in enumerate(selected)],
        )

    # --- finalize ---

    async def finalize_quiz(
        self, quiz_id: str, answers: list[SubmittedAnswer], student_id: str,
    ) -> QuizResult:
        session = await self._load_owned_session(quiz_id, student_id)
        if session.is_finalized:
            raise AlreadyFinalized(quiz_id)

        async with self._enrollment_lock(session.course_id, student_id):
            # A concurrent finalize may have won while we waited.
            session = await self._load_owned_session(quiz_id, student_id)
            if session.is_finalized:
                raise AlreadyFinalized(quiz_id)
            now = self.clock.now()

            questions = await self._load_questions([a.question_id for a in answers])
            evaluated = scoring.evaluate(session, answers, questions)
            correct, incorrect = scoring.count_results(evaluated)
            total_time, avg_time = scoring.average_time(evaluated)
            percent = scoring.percent_correct(correct, len(evaluated))
            passed = percent >= self.settings.pass_threshold_percent

            previous = await self.store.sessions.list_for_student(
                student_id, session.course_id, session.topic_id,
            )
            first = scoring.is_first_approval([s for s in previous if s.id != session.id])
            xp = scoring.compute_xp(correct, incorrect, avg_time, first, percent)

            enrollment = await self._load_enrollment(session.course_id, student_id)
            enrollment = lives.regenerate(enrollment, self.settings.regen_interval_minutes, now)
            enrollment = lives.debit(enrollment, incorrect, now)
            enrollment = replace(enrollment, attempts_completed=enrollment.attempts_completed + 1)
            enrollment = progress.record_activity(enrollment, xp.total, passed, now)

            session.state = SessionState.FINALIZED
            session.ended_at = now
            session.answers = evaluated
            session.correct_count = correct
            session.incorrect_count = incorrect
            session.total_time_seconds = total_time
            session.average_time_per_question = avg_time
            session.xp = xp

            state = await self._next_topic_state(session, percent, passed, now)
            enrollment = await self.store.commit_finalization(enrollment, session, state)

        logger.info(
            "Finalized quiz %s: %d/%d correct, %d XP, %d lives left",
            quiz_id, correct, len(evaluated), xp.total, enrollment.lives_current,
        )
        return QuizResult(
            session_id=quiz_id,
            correct=correct,
            incorrect=incorrect,
            percent=percent,
            passed=passed,
            xp_awarded=xp.total,
            lives_remaining=enrollment.lives_current,
            bonuses=xp,
        )

    async def _next_topic_state(
        self, session: QuizSession, percent: int, passed: bool, now: datetime,
    ) -> TopicCompletionState:
        state = await self.store.topic_states.get(session.course_id, session.student_id, session.topic_id)
        if state is None:
            state = TopicCompletionState(session.course_id, session.student_id, session.topic_id)
        schedule = await self.store.schedules.get(session.course_id)
        window = schedule.window(session.topic_id) if schedule else None
        if window is not None:
            state.attempts_required = window.required_attempts

        state.seen_question_ids |= set(session.question_ids)
        if passed:
            made = state.attempts_made + 1
            state.average_score_percent = (state.average_score_percent * (made - 1) + percent) // made
            state.attempts_made = made
            state.approved = True
            if state.first_attempt_at is None:
                state.first_attempt_at = now
            state.last_attempt_at = now
        return state

    # --- read-only views ---

    async def get_lives_status(self, course_id: str, student_id: str) -> LivesStatus:
        async with self._enrollment_lock(course_id, student_id):
            now = self.clock.now()
            enrollment = await self._regenerate(await self._load_enrollment(course_id, student_id), now)
        return LivesStatus(
            current=enrollment.lives_current,
            max=enrollment.lives_max,
            minutes_to_next=lives.minutes_to_next_life(enrollment, self.settings.regen_interval_minutes, now),
        )

    async def _finalized_session(self, quiz_id: str, student_id: str) -> QuizSession:
        session = await self._load_owned_session(quiz_id, student_id)
        if not session.is_finalized:
            raise InvalidState(quiz_id, session.state.value)
        return session

    async def get_revision(self, quiz_id: str, student_id: str) -> list[RevisionItem]:
        session = await self._finalized_session(quiz_id, student_id)
        questions = await self._load_questions([a.question_id for a in session.answers])
        return build_revision(session, questions)

    async def get_mistake_review(self, quiz_id: str, student_id: str) -> MistakeReview:
        session = await self._finalized_session(quiz_id, student_id)
        missed = [a.question_id for a in session.answers if not a.is_correct]
        questions = await self._load_questions(missed)
        return build_mistake_review(session, questions)

    async def check_eligibility(self, course_id: str, topic_id: str, student_id: str) -> Eligibility:
        schedule = await self.store.schedules.get(course_id)
        if schedule is None:
            return Eligibility(
                False, topic_id, IneligibleReason.TOPIC_UNKNOWN,
                "Course has no schedule", course_id=course_id,
            )
        state = await self.store.topic_states.get(course_id, student_id, topic_id)
        return check_eligibility(schedule, topic_id, state, self.clock.now(), self.settings.cooldown_days)

    async def mark_explanation_viewed(self, student_id: str, topic_id: str) -> None:
        await self.store.explanations.mark_viewed(student_id, topic_id, self.clock.now())

    async def course_progress(self, course_id: str, student_id: str) -> dict:
        enrollment = await self._load_enrollment(course_id, student_id)
        schedule = await self.store.schedules.get(course_id)
        states = await self.store.topic_states.list_for_student(course_id, student_id)
        if schedule is None:
            return progress.summarize(CourseProgress(), enrollment)
        return progress.summarize(course_progress(schedule, states), enrollment)
