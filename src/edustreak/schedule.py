"""Course schedule: per-topic windows, attempt quotas and quiz eligibility."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from edustreak.errors import (
    CooldownActive, InvalidScheduleInput, QuotaReached, ScheduleWindowClosed,
    ScheduleWindowNotOpen, TopicNotInCourse,
)
from edustreak.models import CourseProgress, CourseSchedule, TopicCompletionState, TopicWindow

COOLDOWN_DAYS = 1


class IneligibleReason(str, Enum):
    TOPIC_UNKNOWN = "topic_unknown"
    WINDOW_NOT_OPEN = "window_not_open"
    WINDOW_CLOSED = "window_closed"
    QUOTA_REACHED = "quota_reached"
    COOLDOWN_ACTIVE = "cooldown_active"


@dataclass
class Eligibility:
    eligible: bool
    topic_id: str
    reason: Optional[IneligibleReason] = None
    message: str = "You can take the quiz"
    days_remaining: int = 0
    required_attempts: int = 0
    cooldown_days: int = COOLDOWN_DAYS
    course_id: str = ""

    def raise_for_reason(self) -> None:
        """Raise the precondition error matching an ineligible verdict."""
        if self.eligible:
            return
        if self.reason == IneligibleReason.TOPIC_UNKNOWN:
            raise TopicNotInCourse(self.course_id, self.topic_id)
        if self.reason == IneligibleReason.WINDOW_NOT_OPEN:
            raise ScheduleWindowNotOpen(self.topic_id, self.days_remaining)
        if self.reason == IneligibleReason.WINDOW_CLOSED:
            raise ScheduleWindowClosed(self.topic_id)
        if self.reason == IneligibleReason.QUOTA_REACHED:
            raise QuotaReached(self.topic_id, self.required_attempts)
        raise CooldownActive(self.topic_id, self.cooldown_days)


def required_attempts(days_allocated: int) -> int:
    if days_allocated <= 2:
        return 3
    elif days_allocated <= 5:
        return 5
    elif days_allocated <= 10:
        return 7
    return 10


def build_schedule(
    course_id: str,
    topics: list,
    duration_days: int,
    start_at: datetime,
) -> CourseSchedule:
    """Lay the topics out back-to-back from ``start_at``.

    ``topics`` holds topic ids or ``(topic_id, title)`` pairs. Every topic
    gets ``max(1, duration_days // len(topics))`` days; days left over by the
    integer division are added to the last topic so the windows cover the
    whole course.
    """
    if not topics:
        raise InvalidScheduleInput("A course needs at least one topic to be scheduled")
    if duration_days <= 0:
        raise InvalidScheduleInput(f"Course duration must be positive, got {duration_days}")

    days_per_topic = max(1, duration_days // len(topics))
    remainder = max(0, duration_days - days_per_topic * len(topics))

    topic_ids = []
    windows = {}
    cursor = start_at
    for index, topic in enumerate(topics):
        topic_id, title = (topic, "") if isinstance(topic, str) else topic
        if topic_id in windows:
            raise InvalidScheduleInput(f"Topic {topic_id} appears twice in the course")
        days = days_per_topic
        if index == len(topics) - 1:
            days += remainder
        end = cursor + timedelta(days=days)
        windows[topic_id] = TopicWindow(
            topic_id=topic_id,
            title=title,
            start_at=cursor,
            end_at=end,
            required_attempts=required_attempts(days),
            days_allocated=days,
        )
        topic_ids.append(topic_id)
        cursor = end

    return CourseSchedule(
        course_id=course_id,
        topic_ids=topic_ids,
        windows=windows,
        days_per_topic=days_per_topic,
        remainder_days=remainder,
    )


def check_eligibility(
    schedule: CourseSchedule,
    topic_id: str,
    state: Optional[TopicCompletionState],
    now: datetime,
    cooldown_days: int = COOLDOWN_DAYS,
) -> Eligibility:
    """Decide whether a quiz of ``topic_id`` may start at ``now``.

    Checks run in a fixed order and the first failing one wins: unknown
    topic, window not open, window closed, quota reached, cooldown.
    """
    window = schedule.window(topic_id)
    if window is None:
        return Eligibility(
            False, topic_id, IneligibleReason.TOPIC_UNKNOWN,
            "Topic is not part of the course schedule", course_id=schedule.course_id,
        )

    if now < window.start_at:
        days = (window.start_at - now).days
        return Eligibility(
            False, topic_id, IneligibleReason.WINDOW_NOT_OPEN,
            f"This topic opens in {days} day(s)", days_remaining=days,
            course_id=schedule.course_id,
        )

    if now > window.end_at:
        return Eligibility(
            False, topic_id, IneligibleReason.WINDOW_CLOSED,
            "The period for this topic has ended", course_id=schedule.course_id,
        )

    attempts = state.attempts_made if state else 0
    if attempts >= window.required_attempts:
        return Eligibility(
            False, topic_id, IneligibleReason.QUOTA_REACHED,
            "All quizzes for this topic are done",
            required_attempts=window.required_attempts, course_id=schedule.course_id,
        )

    if state is not None and state.last_attempt_at is not None:
        if now - state.last_attempt_at < timedelta(days=cooldown_days):
            return Eligibility(
                False, topic_id, IneligibleReason.COOLDOWN_ACTIVE,
                f"Wait at least {cooldown_days} day(s) between quizzes",
                cooldown_days=cooldown_days, course_id=schedule.course_id,
            )

    return Eligibility(
        True, topic_id, required_attempts=window.required_attempts,
        course_id=schedule.course_id,
    )


def active_topic(schedule: CourseSchedule, now: datetime) -> Optional[TopicWindow]:
    # Adjacent windows share a boundary instant; the earlier topic keeps it.
    for window in schedule.ordered_windows():
        if window.contains(now):
            return window
    return None


def course_progress(schedule: CourseSchedule, states: list[TopicCompletionState]) -> CourseProgress:
    in_course = [s for s in states if s.topic_id in schedule.windows]
    required = sum(w.required_attempts for w in schedule.windows.values())
    made = sum(s.attempts_made for s in in_course)
    return CourseProgress(
        total_topics=len(schedule.topic_ids),
        approved_topics=sum(1 for s in in_course if s.approved),
        required_attempts=required,
        attempts_made=made,
        percent=(made * 100) // required if required else 0,
    )
