"""Streaks, experience and course progress labels."""
from dataclasses import replace
from datetime import datetime

from edustreak.models import CourseProgress, Enrollment


def get_progress_label(percent: float) -> str:
    if percent >= 100:
        return "COMPLETE"
    elif percent >= 65:
        return "ON TRACK"
    elif percent >= 30:
        return "IN PROGRESS"
    return "GETTING STARTED"


def get_progress_color(percent: float) -> str:
    if percent >= 100:
        return "green"
    elif percent >= 65:
        return "yellow"
    elif percent >= 30:
        return "dark_orange"
    return "red"


def next_streak(current: int, last_activity_at: datetime | None, now: datetime, passed: bool) -> int:
    """Consecutive-day streak after a quiz finished at ``now``.

    Same day keeps the streak, the next day extends it on a pass, and a gap
    of two or more days restarts it.
    """
    if last_activity_at is None:
        return 1 if passed else 0
    days = (now - last_activity_at).days
    if days >= 2:
        return 1 if passed else 0
    if days >= 1:
        return current + 1 if passed else current
    if current == 0 and passed:
        return 1
    return current


def record_activity(enrollment: Enrollment, xp: int, passed: bool, now: datetime) -> Enrollment:
    streak = next_streak(enrollment.streak_days, enrollment.last_activity_at, now, passed)
    return replace(
        enrollment,
        experience=enrollment.experience + xp,
        streak_days=streak,
        best_streak=max(enrollment.best_streak, streak),
        last_activity_at=now,
    )


def summarize(progress: CourseProgress, enrollment: Enrollment | None = None) -> dict:
    summary = {
        "topics": progress.total_topics,
        "topics_approved": progress.approved_topics,
        "quizzes_required": progress.required_attempts,
        "quizzes_done": progress.attempts_made,
        "percent": progress.percent,
        "label": get_progress_label(progress.percent),
    }
    if enrollment is not None:
        summary.update({
            "experience": enrollment.experience,
            "streak_days": enrollment.streak_days,
            "best_streak": enrollment.best_streak,
        })
    return summary
