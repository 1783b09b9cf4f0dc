"""Storage interfaces used by the quiz core, plus an in-memory implementation."""
import asyncio
import copy
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime
from typing import Optional

from edustreak.errors import AlreadyFinalized, ConcurrentUpdate, QuestionNotFound
from edustreak.models import (
    CourseSchedule, Enrollment, Question, QuestionStatus, QuizSession, SessionState,
    TopicCompletionState,
)


class QuestionRepository(ABC):
    @abstractmethod
    async def list_approved(self, course_id: str, topic_id: str) -> list[Question]: ...

    @abstractmethod
    async def list_by_status(self, course_id: str, status: QuestionStatus) -> list[Question]: ...

    @abstractmethod
    async def get(self, question_id: str) -> Optional[Question]: ...

    @abstractmethod
    async def put(self, question: Question) -> None: ...

    @abstractmethod
    async def increment_usage(self, question_id: str, student_id: str) -> None: ...


class EnrollmentRepository(ABC):
    @abstractmethod
    async def get(self, course_id: str, student_id: str) -> Optional[Enrollment]: ...

    @abstractmethod
    async def put(self, enrollment: Enrollment) -> Enrollment:
        """Conditional write keyed by ``enrollment.version``.

        The stored version must equal ``enrollment.version`` (0 for a new
        record); the returned copy carries the bumped version. Raises
        ConcurrentUpdate otherwise.
        """


class SessionRepository(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> Optional[QuizSession]: ...

    @abstractmethod
    async def put(self, session: QuizSession) -> None: ...

    @abstractmethod
    async def list_for_student(
        self, student_id: str, course_id: str | None = None, topic_id: str | None = None,
    ) -> list[QuizSession]: ...


class ScheduleSource(ABC):
    @abstractmethod
    async def get(self, course_id: str) -> Optional[CourseSchedule]: ...

    @abstractmethod
    async def put(self, schedule: CourseSchedule) -> None: ...


class ExplanationViewedRepository(ABC):
    @abstractmethod
    async def is_viewed(self, student_id: str, topic_id: str) -> bool: ...

    @abstractmethod
    async def mark_viewed(self, student_id: str, topic_id: str, at: datetime) -> None: ...


class TopicStateRepository(ABC):
    @abstractmethod
    async def get(self, course_id: str, student_id: str, topic_id: str) -> Optional[TopicCompletionState]: ...

    @abstractmethod
    async def list_for_student(self, course_id: str, student_id: str) -> list[TopicCompletionState]: ...

    @abstractmethod
    async def put(self, state: TopicCompletionState) -> None: ...


class Store(ABC):
    """Bundle of repositories plus the one multi-record atomic write."""

    questions: QuestionRepository
    enrollments: EnrollmentRepository
    sessions: SessionRepository
    schedules: ScheduleSource
    explanations: ExplanationViewedRepository
    topic_states: TopicStateRepository

    @abstractmethod
    async def commit_finalization(
        self,
        enrollment: Enrollment,
        session: QuizSession,
        topic_state: TopicCompletionState,
    ) -> Enrollment:
        """Persist the debited enrollment, the finalized session and the topic state together.

        Nothing is written unless the enrollment version still matches and
        the stored session is still in progress.
        """


# --- In-memory implementation ---


async def _io():
    # Yield to the loop like a real round trip would.
    await asyncio.sleep(0)


class InMemoryQuestionRepository(QuestionRepository):
    def __init__(self):
        self._rows: dict[str, Question] = {}

    async def list_approved(self, course_id, topic_id):
        await _io()
        return [
            copy.deepcopy(q) for q in self._rows.values()
            if q.course_id == course_id and q.topic_id == topic_id and q.status == QuestionStatus.APPROVED
        ]

    async def list_by_status(self, course_id, status):
        await _io()
        return [copy.deepcopy(q) for q in self._rows.values() if q.course_id == course_id and q.status == status]

    async def get(self, question_id):
        await _io()
        q = self._rows.get(question_id)
        return copy.deepcopy(q) if q else None

    async def put(self, question):
        await _io()
        self._rows[question.id] = copy.deepcopy(question)

    async def increment_usage(self, question_id, student_id):
        await _io()
        q = self._rows.get(question_id)
        if q is None:
            raise QuestionNotFound(question_id)
        q.usage[student_id] = q.usage.get(student_id, 0) + 1


class InMemoryEnrollmentRepository(EnrollmentRepository):
    def __init__(self):
        self._rows: dict[tuple[str, str], Enrollment] = {}

    def _check_version(self, enrollment: Enrollment) -> None:
        current = self._rows.get(enrollment.key)
        found = current.version if current else 0
        if found != enrollment.version:
            raise ConcurrentUpdate(enrollment.course_id, enrollment.student_id, enrollment.version, found)

    def _write(self, enrollment: Enrollment) -> Enrollment:
        stored = replace(enrollment, version=enrollment.version + 1)
        self._rows[enrollment.key] = stored
        return replace(stored)

    async def get(self, course_id, student_id):
        await _io()
        e = self._rows.get((course_id, student_id))
        return replace(e) if e else None

    async def put(self, enrollment):
        await _io()
        self._check_version(enrollment)
        return self._write(enrollment)


class InMemorySessionRepository(SessionRepository):
    def __init__(self):
        self._rows: dict[str, QuizSession] = {}

    async def get(self, session_id):
        await _io()
        s = self._rows.get(session_id)
        return copy.deepcopy(s) if s else None

    async def put(self, session):
        await _io()
        self._rows[session.id] = copy.deepcopy(session)

    async def list_for_student(self, student_id, course_id=None, topic_id=None):
        await _io()
        return [
            copy.deepcopy(s) for s in self._rows.values()
            if s.student_id == student_id
            and (course_id is None or s.course_id == course_id)
            and (topic_id is None or s.topic_id == topic_id)
        ]


class InMemoryScheduleSource(ScheduleSource):
    def __init__(self):
        self._rows: dict[str, CourseSchedule] = {}

    async def get(self, course_id):
        await _io()
        s = self._rows.get(course_id)
        return copy.deepcopy(s) if s else None

    async def put(self, schedule):
        await _io()
        self._rows[schedule.course_id] = copy.deepcopy(schedule)


class InMemoryExplanationViewedRepository(ExplanationViewedRepository):
    def __init__(self):
        self._rows: dict[tuple[str, str], datetime] = {}

    async def is_viewed(self, student_id, topic_id):
        await _io()
        return (student_id, topic_id) in self._rows

    async def mark_viewed(self, student_id, topic_id, at):
        await _io()
        self._rows[(student_id, topic_id)] = at


class InMemoryTopicStateRepository(TopicStateRepository):
    def __init__(self):
        self._rows: dict[tuple[str, str, str], TopicCompletionState] = {}

    async def get(self, course_id, student_id, topic_id):
        await _io()
        s = self._rows.get((course_id, student_id, topic_id))
        return copy.deepcopy(s) if s else None

    async def list_for_student(self, course_id, student_id):
        await _io()
        return [
            copy.deepcopy(s) for (c, st, _), s in self._rows.items()
            if c == course_id and st == student_id
        ]

    async def put(self, state):
        await _io()
        self._rows[(state.course_id, state.student_id, state.topic_id)] = copy.deepcopy(state)


class InMemoryStore(Store):
    def __init__(self):
        self.questions = InMemoryQuestionRepository()
        self.enrollments = InMemoryEnrollmentRepository()
        self.sessions = InMemorySessionRepository()
        self.schedules = InMemoryScheduleSource()
        self.explanations = InMemoryExplanationViewedRepository()
        self.topic_states = InMemoryTopicStateRepository()

    async def commit_finalization(self, enrollment, session, topic_state):
        await _io()
        # All checks before any write; no awaits between them.
        self.enrollments._check_version(enrollment)
        stored = self.sessions._rows.get(session.id)
        if stored is not None and stored.state == SessionState.FINALIZED:
            raise AlreadyFinalized(session.id)
        saved = self.enrollments._write(enrollment)
        self.sessions._rows[session.id] = copy.deepcopy(session)
        key = (topic_state.course_id, topic_state.student_id, topic_state.topic_id)
        self.topic_states._rows[key] = copy.deepcopy(topic_state)
        return saved
