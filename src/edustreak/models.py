"""Data classes for the quiz domain model."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class EnrollmentStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    INACTIVE = "inactive"


class SessionState(str, Enum):
    IN_PROGRESS = "in_progress"
    FINALIZED = "finalized"


class QuestionStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class Enrollment:
    course_id: str
    student_id: str
    status: EnrollmentStatus = EnrollmentStatus.IN_PROGRESS
    lives_current: int = 5
    lives_max: int = 5
    last_regen_at: Optional[datetime] = None
    attempts_completed: int = 0
    experience: int = 0
    streak_days: int = 0
    best_streak: int = 0
    last_activity_at: Optional[datetime] = None
    version: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.course_id, self.student_id)


@dataclass
class TopicWindow:
    topic_id: str
    start_at: datetime
    end_at: datetime
    required_attempts: int
    days_allocated: int
    title: str = ""

    def contains(self, moment: datetime) -> bool:
        return self.start_at <= moment <= self.end_at


@dataclass
class CourseSchedule:
    course_id: str
    topic_ids: list[str]
    windows: dict[str, TopicWindow]
    days_per_topic: int
    remainder_days: int = 0

    def window(self, topic_id: str) -> Optional[TopicWindow]:
        return self.windows.get(topic_id)

    def ordered_windows(self) -> list[TopicWindow]:
        return [self.windows[t] for t in self.topic_ids]


@dataclass
class TopicCompletionState:
    course_id: str
    student_id: str
    topic_id: str
    attempts_made: int = 0
    attempts_required: int = 0
    average_score_percent: int = 0
    approved: bool = False
    first_attempt_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    seen_question_ids: set[str] = field(default_factory=set)


@dataclass
class Option:
    id: int
    text: str
    is_correct: bool = False


@dataclass
class Question:
    id: str
    course_id: str
    topic_id: str
    text: str
    options: list[Option]
    status: QuestionStatus = QuestionStatus.PENDING_REVIEW
    explanation: str = ""
    source: str = "instructor"
    review_notes: Optional[str] = None
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def correct_index(self) -> int:
        """Index of the option flagged correct, -1 when none is."""
        for i, option in enumerate(self.options):
            if option.is_correct:
                return i
        return -1

    def usage_for(self, student_id: str) -> int:
        return self.usage.get(student_id, 0)


@dataclass
class PublicOption:
    id: int
    text: str


@dataclass
class PublicQuestion:
    id: str
    order: int
    text: str
    options: list[PublicOption]


@dataclass
class SessionQuestion:
    question_id: str
    order: int


@dataclass
class SubmittedAnswer:
    question_id: str
    selected_option: int
    time_seconds: int = 0


@dataclass
class EvaluatedAnswer:
    question_id: str
    selected_option: int
    time_seconds: int
    is_correct: bool


@dataclass
class XPBreakdown:
    base: int = 0
    speed: int = 0
    perfect: int = 0
    first_time: int = 0

    @property
    def total(self) -> int:
        return self.base + self.speed + self.perfect + self.first_time


@dataclass
class QuizSession:
    id: str
    course_id: str
    topic_id: str
    student_id: str
    questions: list[SessionQuestion]
    started_at: datetime
    attempt_number: int = 1
    state: SessionState = SessionState.IN_PROGRESS
    ended_at: Optional[datetime] = None
    answers: list[EvaluatedAnswer] = field(default_factory=list)
    correct_count: int = 0
    incorrect_count: int = 0
    total_time_seconds: int = 0
    average_time_per_question: float = 0.0
    xp: XPBreakdown = field(default_factory=XPBreakdown)

    @property
    def question_ids(self) -> list[str]:
        return [q.question_id for q in sorted(self.questions, key=lambda q: q.order)]

    @property
    def is_finalized(self) -> bool:
        return self.state == SessionState.FINALIZED


@dataclass
class StartedQuiz:
    session_id: str
    attempt_number: int
    questions: list[PublicQuestion]


@dataclass
class QuizResult:
    session_id: str
    correct: int
    incorrect: int
    percent: int
    passed: bool
    xp_awarded: int
    lives_remaining: int
    bonuses: XPBreakdown


@dataclass
class LivesStatus:
    current: int
    max: int
    minutes_to_next: int


@dataclass
class RevisionItem:
    question_id: str
    text: str
    options: list[Option]
    selected_option: int
    correct_option: int
    explanation: str


@dataclass
class MistakeItem:
    question_id: str
    text: str
    selected_text: str
    correct_text: str
    explanation: str


@dataclass
class MistakeReview:
    session_id: str
    total_mistakes: int
    mistakes: list[MistakeItem]


@dataclass
class CourseProgress:
    total_topics: int = 0
    approved_topics: int = 0
    required_attempts: int = 0
    attempts_made: int = 0
    percent: int = 0
