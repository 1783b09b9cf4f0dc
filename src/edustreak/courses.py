"""Course setup and enrollment: the writers the quiz core only reads from."""
import logging
from dataclasses import replace
from datetime import datetime

from edustreak.config import Settings
from edustreak.errors import ConcurrentUpdate, NotEnrolled
from edustreak.models import CourseSchedule, Enrollment, EnrollmentStatus
from edustreak.repository import Store
from edustreak.schedule import build_schedule

logger = logging.getLogger(__name__)

STATUS_WRITE_ATTEMPTS = 3


async def create_course(
    store: Store,
    course_id: str,
    topics: list,
    duration_days: int,
    start_at: datetime,
) -> CourseSchedule:
    """Build and store the course schedule. Also used when a course is edited.

    InvalidScheduleInput propagates before anything is stored, so a bad
    course never becomes active.
    """
    schedule = build_schedule(course_id, topics, duration_days, start_at)
    await store.schedules.put(schedule)
    if schedule.remainder_days:
        logger.info(
            "Course %s: %d leftover day(s) added to the last topic", course_id, schedule.remainder_days,
        )
    return schedule


async def enroll_student(
    store: Store,
    course_id: str,
    student_id: str,
    now: datetime,
    settings: Settings | None = None,
) -> Enrollment:
    """Join a course with a full set of lives.

    Joining twice returns the existing enrollment, also when both joins
    race: the losing insert re-reads the row the winner created.
    """
    settings = settings or Settings()
    existing = await store.enrollments.get(course_id, student_id)
    if existing is not None:
        return existing
    enrollment = Enrollment(
        course_id=course_id,
        student_id=student_id,
        lives_current=settings.lives_max,
        lives_max=settings.lives_max,
        last_regen_at=now,
    )
    try:
        created = await store.enrollments.put(enrollment)
    except ConcurrentUpdate:
        existing = await store.enrollments.get(course_id, student_id)
        if existing is None:
            raise
        return existing
    logger.info("Enrolled %s in %s", student_id, course_id)
    return created


async def set_enrollment_status(
    store: Store, course_id: str, student_id: str, status: EnrollmentStatus,
) -> Enrollment:
    for attempt in range(1, STATUS_WRITE_ATTEMPTS + 1):
        enrollment = await store.enrollments.get(course_id, student_id)
        if enrollment is None:
            raise NotEnrolled(course_id, student_id)
        try:
            return await store.enrollments.put(replace(enrollment, status=status))
        except ConcurrentUpdate:
            if attempt == STATUS_WRITE_ATTEMPTS:
                raise
            logger.debug("Enrollment %s/%s changed while setting status, retrying", course_id, student_id)


async def deactivate_enrollment(store: Store, course_id: str, student_id: str) -> Enrollment:
    return await set_enrollment_status(store, course_id, student_id, EnrollmentStatus.INACTIVE)
