"""Exception taxonomy for quiz gating, scoring and persistence."""


class EdustreakError(Exception):
    """Base class for every error raised by the quiz core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- Precondition errors: surfaced to the student, never retried ---


class PreconditionError(EdustreakError):
    pass


class NotEnrolled(PreconditionError):
    def __init__(self, course_id: str, student_id: str):
        super().__init__(f"Student {student_id} is not enrolled in course {course_id}")
        self.course_id = course_id
        self.student_id = student_id


class InvalidEnrollmentState(PreconditionError):
    def __init__(self, status: str):
        super().__init__(f"Enrollment status '{status}' does not allow quizzes")
        self.status = status


class TopicNotInCourse(PreconditionError):
    def __init__(self, course_id: str, topic_id: str):
        super().__init__(f"Topic {topic_id} is not part of course {course_id}")
        self.course_id = course_id
        self.topic_id = topic_id


class ExplanationNotViewed(PreconditionError):
    def __init__(self, topic_id: str):
        super().__init__(f"The explanation for topic {topic_id} must be viewed before the quiz")
        self.topic_id = topic_id


class NoLivesAvailable(PreconditionError):
    def __init__(self, minutes_to_next: int):
        super().__init__(f"No lives left. Next life in {minutes_to_next} minute(s)")
        self.minutes_to_next = minutes_to_next


class ScheduleWindowNotOpen(PreconditionError):
    def __init__(self, topic_id: str, days_remaining: int):
        super().__init__(f"Topic {topic_id} opens in {days_remaining} day(s)")
        self.topic_id = topic_id
        self.days_remaining = days_remaining


class ScheduleWindowClosed(PreconditionError):
    def __init__(self, topic_id: str):
        super().__init__(f"The period for topic {topic_id} has ended")
        self.topic_id = topic_id


class QuotaReached(PreconditionError):
    def __init__(self, topic_id: str, required: int):
        super().__init__(f"All {required} quizzes for topic {topic_id} are already done")
        self.topic_id = topic_id
        self.required = required


class CooldownActive(PreconditionError):
    def __init__(self, topic_id: str, cooldown_days: int):
        super().__init__(f"Wait at least {cooldown_days} day(s) between quizzes of topic {topic_id}")
        self.topic_id = topic_id
        self.cooldown_days = cooldown_days


class NoQuestionsAvailable(PreconditionError):
    def __init__(self, course_id: str, topic_id: str):
        super().__init__(f"No approved questions for topic {topic_id} in course {course_id}")
        self.course_id = course_id
        self.topic_id = topic_id


# --- Integrity errors: misuse or inconsistent data ---


class IntegrityError(EdustreakError):
    kind = "conflict"


class QuizNotFound(IntegrityError):
    kind = "not_found"

    def __init__(self, quiz_id: str):
        super().__init__(f"Quiz {quiz_id} not found")
        self.quiz_id = quiz_id


class NotOwner(IntegrityError):
    kind = "forbidden"

    def __init__(self, quiz_id: str):
        super().__init__(f"Quiz {quiz_id} belongs to another student")
        self.quiz_id = quiz_id


class AlreadyFinalized(IntegrityError):
    kind = "conflict"

    def __init__(self, quiz_id: str):
        super().__init__(f"Quiz {quiz_id} was already finalized")
        self.quiz_id = quiz_id


class InvalidState(IntegrityError):
    kind = "conflict"

    def __init__(self, quiz_id: str, state: str):
        super().__init__(f"Quiz {quiz_id} is '{state}', expected 'finalized'")
        self.quiz_id = quiz_id
        self.state = state


class QuestionNotFound(IntegrityError):
    kind = "not_found"

    def __init__(self, question_id: str):
        super().__init__(f"Question {question_id} not found")
        self.question_id = question_id


class InvalidScheduleInput(IntegrityError):
    kind = "configuration"


class InvalidReviewState(IntegrityError):
    kind = "conflict"

    def __init__(self, question_id: str, status: str):
        super().__init__(f"Question {question_id} is '{status}' and cannot be reviewed")
        self.question_id = question_id
        self.status = status


# --- Infrastructure errors: propagated unmodified, nothing half-written ---


class InfrastructureError(EdustreakError):
    pass


class ConcurrentUpdate(InfrastructureError):
    def __init__(self, course_id: str, student_id: str, expected: int, found: int):
        super().__init__(
            f"Enrollment {course_id}/{student_id} changed concurrently "
            f"(expected version {expected}, found {found})"
        )
        self.expected = expected
        self.found = found


class EnrollmentBusy(InfrastructureError):
    def __init__(self, course_id: str, student_id: str, timeout: float):
        super().__init__(
            f"Enrollment {course_id}/{student_id} is locked by another request (waited {timeout}s)"
        )
        self.timeout = timeout
