"""Lives regeneration: a capped leaky bucket refilled one life per interval."""
from dataclasses import replace
from datetime import datetime

from edustreak.models import Enrollment


def elapsed_minutes(enrollment: Enrollment, now: datetime) -> int:
    if enrollment.last_regen_at is None:
        return 0
    seconds = (now - enrollment.last_regen_at).total_seconds()
    return max(0, int(seconds // 60))


def regenerate(enrollment: Enrollment, regen_interval_minutes: int, now: datetime) -> Enrollment:
    """Return the enrollment with recovered lives applied.

    Args:
        enrollment: Current enrollment snapshot (not modified).
        regen_interval_minutes: Minutes needed to recover one life.
        now: Current instant.

    Returns:
        The same object when nothing was recovered, so the timestamp keeps
        the partial progress toward the next life. Otherwise a copy with
        lives capped at ``lives_max`` and ``last_regen_at`` moved to ``now``.
    """
    if enrollment.last_regen_at is None:
        return replace(enrollment, last_regen_at=now)
    recovered = elapsed_minutes(enrollment, now) // regen_interval_minutes
    if recovered <= 0:
        return enrollment
    lives = min(enrollment.lives_max, enrollment.lives_current + recovered)
    return replace(enrollment, lives_current=max(0, lives), last_regen_at=now)


def minutes_to_next_life(enrollment: Enrollment, regen_interval_minutes: int, now: datetime) -> int:
    if enrollment.lives_current >= enrollment.lives_max:
        return 0
    return regen_interval_minutes - (elapsed_minutes(enrollment, now) % regen_interval_minutes)


def debit(enrollment: Enrollment, lost: int, now: datetime) -> Enrollment:
    """Take ``lost`` lives, never going below zero.

    A full bucket has no regeneration in flight, so the clock restarts at
    the moment the first life is lost.
    """
    if lost <= 0:
        return enrollment
    last_regen = enrollment.last_regen_at
    if enrollment.lives_current >= enrollment.lives_max:
        last_regen = now
    return replace(
        enrollment,
        lives_current=max(0, enrollment.lives_current - lost),
        last_regen_at=last_regen,
    )
