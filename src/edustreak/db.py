"""SQLite persistence: schema, connections and the SqliteStore repositories."""
import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from pathlib import Path

from edustreak.config import DEFAULT_DB_PATH
from edustreak.errors import AlreadyFinalized, ConcurrentUpdate, QuestionNotFound
from edustreak.models import (
    CourseSchedule, Enrollment, EnrollmentStatus, EvaluatedAnswer, Option, Question,
    QuestionStatus, QuizSession, SessionQuestion, SessionState, TopicCompletionState,
    TopicWindow, XPBreakdown,
)
from edustreak.repository import (
    EnrollmentRepository, ExplanationViewedRepository, QuestionRepository, ScheduleSource,
    SessionRepository, Store, TopicStateRepository,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS questions (
    id TEXT PRIMARY KEY,
    course_id TEXT NOT NULL,
    topic_id TEXT NOT NULL,
    text TEXT NOT NULL,
    options TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending_review',
    explanation TEXT,
    source TEXT DEFAULT 'instructor',
    review_notes TEXT
);

CREATE TABLE IF NOT EXISTS question_usage (
    question_id TEXT NOT NULL REFERENCES questions(id),
    student_id TEXT NOT NULL,
    times_used INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (question_id, student_id)
);

CREATE TABLE IF NOT EXISTS enrollments (
    course_id TEXT NOT NULL,
    student_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'in_progress',
    lives_current INTEGER NOT NULL,
    lives_max INTEGER NOT NULL,
    last_regen_at TEXT,
    attempts_completed INTEGER DEFAULT 0,
    experience INTEGER DEFAULT 0,
    streak_days INTEGER DEFAULT 0,
    best_streak INTEGER DEFAULT 0,
    last_activity_at TEXT,
    version INTEGER NOT NULL DEFAULT 1,
    PRIMARY KEY (course_id, student_id),
    CHECK (lives_current >= 0 AND lives_current <= lives_max)
);

CREATE TABLE IF NOT EXISTS quiz_sessions (
    id TEXT PRIMARY KEY,
    course_id TEXT NOT NULL,
    topic_id TEXT NOT NULL,
    student_id TEXT NOT NULL,
    questions TEXT NOT NULL,
    started_at TEXT NOT NULL,
    ended_at TEXT,
    state TEXT NOT NULL DEFAULT 'in_progress',
    attempt_number INTEGER DEFAULT 1,
    answers TEXT DEFAULT '[]',
    correct_count INTEGER DEFAULT 0,
    incorrect_count INTEGER DEFAULT 0,
    total_time_seconds INTEGER DEFAULT 0,
    average_time REAL DEFAULT 0,
    xp_base INTEGER DEFAULT 0,
    xp_speed INTEGER DEFAULT 0,
    xp_perfect INTEGER DEFAULT 0,
    xp_first_time INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_sessions_student ON quiz_sessions (student_id, course_id, topic_id);

CREATE TABLE IF NOT EXISTS course_schedules (
    course_id TEXT PRIMARY KEY,
    days_per_topic INTEGER NOT NULL,
    remainder_days INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS topic_windows (
    course_id TEXT NOT NULL REFERENCES course_schedules(course_id),
    topic_id TEXT NOT NULL,
    position INTEGER NOT NULL,
    title TEXT,
    start_at TEXT NOT NULL,
    end_at TEXT NOT NULL,
    required_attempts INTEGER NOT NULL,
    days_allocated INTEGER NOT NULL,
    PRIMARY KEY (course_id, topic_id)
);

CREATE TABLE IF NOT EXISTS explanations_viewed (
    student_id TEXT NOT NULL,
    topic_id TEXT NOT NULL,
    viewed_at TEXT,
    PRIMARY KEY (student_id, topic_id)
);

CREATE TABLE IF NOT EXISTS topic_states (
    course_id TEXT NOT NULL,
    student_id TEXT NOT NULL,
    topic_id TEXT NOT NULL,
    attempts_made INTEGER DEFAULT 0,
    attempts_required INTEGER DEFAULT 0,
    average_score_percent INTEGER DEFAULT 0,
    approved INTEGER DEFAULT 0,
    first_attempt_at TEXT,
    last_attempt_at TEXT,
    seen_question_ids TEXT DEFAULT '[]',
    PRIMARY KEY (course_id, student_id, topic_id)
);
"""


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Return a SQLite connection with row factory and foreign keys enabled."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize the database, creating all tables if they don't exist."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = get_connection(db_path)
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


@contextmanager
def transaction(db_path: str):
    """Connection in an explicit write transaction; rolled back on any error."""
    conn = get_connection(db_path)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment else None


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# --- row mapping ---


def _question_from_row(row, usage: dict[str, int]) -> Question:
    return Question(
        id=row["id"],
        course_id=row["course_id"],
        topic_id=row["topic_id"],
        text=row["text"],
        options=[Option(**o) for o in json.loads(row["options"])],
        status=QuestionStatus(row["status"]),
        explanation=row["explanation"] or "",
        source=row["source"] or "instructor",
        review_notes=row["review_notes"],
        usage=usage,
    )


def _enrollment_from_row(row) -> Enrollment:
    return Enrollment(
        course_id=row["course_id"],
        student_id=row["student_id"],
        status=EnrollmentStatus(row["status"]),
        lives_current=row["lives_current"],
        lives_max=row["lives_max"],
        last_regen_at=_dt(row["last_regen_at"]),
        attempts_completed=row["attempts_completed"],
        experience=row["experience"],
        streak_days=row["streak_days"],
        best_streak=row["best_streak"],
        last_activity_at=_dt(row["last_activity_at"]),
        version=row["version"],
    )


def _session_from_row(row) -> QuizSession:
    return QuizSession(
        id=row["id"],
        course_id=row["course_id"],
        topic_id=row["topic_id"],
        student_id=row["student_id"],
        questions=[SessionQuestion(**q) for q in json.loads(row["questions"])],
        started_at=_dt(row["started_at"]),
        ended_at=_dt(row["ended_at"]),
        state=SessionState(row["state"]),
        attempt_number=row["attempt_number"],
        answers=[EvaluatedAnswer(**a) for a in json.loads(row["answers"] or "[]")],
        correct_count=row["correct_count"],
        incorrect_count=row["incorrect_count"],
        total_time_seconds=row["total_time_seconds"],
        average_time_per_question=row["average_time"],
        xp=XPBreakdown(row["xp_base"], row["xp_speed"], row["xp_perfect"], row["xp_first_time"]),
    )


def _topic_state_from_row(row) -> TopicCompletionState:
    return TopicCompletionState(
        course_id=row["course_id"],
        student_id=row["student_id"],
        topic_id=row["topic_id"],
        attempts_made=row["attempts_made"],
        attempts_required=row["attempts_required"],
        average_score_percent=row["average_score_percent"],
        approved=bool(row["approved"]),
        first_attempt_at=_dt(row["first_attempt_at"]),
        last_attempt_at=_dt(row["last_attempt_at"]),
        seen_question_ids=set(json.loads(row["seen_question_ids"] or "[]")),
    )


# --- writes shared by single-record puts and the finalization transaction ---


def _write_enrollment(conn: sqlite3.Connection, e: Enrollment) -> None:
    values = (
        e.status.value, e.lives_current, e.lives_max, _iso(e.last_regen_at), e.attempts_completed,
        e.experience, e.streak_days, e.best_streak, _iso(e.last_activity_at),
    )
    if e.version == 0:
        try:
            conn.execute(
                """INSERT INTO enrollments (status, lives_current, lives_max, last_regen_at,
                attempts_completed, experience, streak_days, best_streak, last_activity_at,
                course_id, student_id, version) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)""",
                values + (e.course_id, e.student_id),
            )
            return
        except sqlite3.IntegrityError:
            existing = conn.execute(
                "SELECT version FROM enrollments WHERE course_id = ? AND student_id = ?",
                (e.course_id, e.student_id),
            ).fetchone()
            if existing is None:
                raise
            raise ConcurrentUpdate(e.course_id, e.student_id, 0, existing["version"]) from None

    cursor = conn.execute(
        """UPDATE enrollments SET status=?, lives_current=?, lives_max=?, last_regen_at=?,
        attempts_completed=?, experience=?, streak_days=?, best_streak=?, last_activity_at=?,
        version = version + 1
        WHERE course_id = ? AND student_id = ? AND version = ?""",
        values + (e.course_id, e.student_id, e.version),
    )
    if cursor.rowcount == 0:
        row = conn.execute(
            "SELECT version FROM enrollments WHERE course_id = ? AND student_id = ?",
            (e.course_id, e.student_id),
        ).fetchone()
        raise ConcurrentUpdate(e.course_id, e.student_id, e.version, row["version"] if row else 0)


def _write_session(conn: sqlite3.Connection, s: QuizSession) -> None:
    conn.execute(
        """INSERT OR REPLACE INTO quiz_sessions (id, course_id, topic_id, student_id, questions,
        started_at, ended_at, state, attempt_number, answers, correct_count, incorrect_count,
        total_time_seconds, average_time, xp_base, xp_speed, xp_perfect, xp_first_time)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            s.id, s.course_id, s.topic_id, s.student_id,
            json.dumps([{"question_id": q.question_id, "order": q.order} for q in s.questions]),
            _iso(s.started_at), _iso(s.ended_at), s.state.value, s.attempt_number,
            json.dumps([a.__dict__ for a in s.answers]),
            s.correct_count, s.incorrect_count, s.total_time_seconds, s.average_time_per_question,
            s.xp.base, s.xp.speed, s.xp.perfect, s.xp.first_time,
        ),
    )


def _write_topic_state(conn: sqlite3.Connection, t: TopicCompletionState) -> None:
    conn.execute(
        """INSERT OR REPLACE INTO topic_states (course_id, student_id, topic_id, attempts_made,
        attempts_required, average_score_percent, approved, first_attempt_at, last_attempt_at,
        seen_question_ids) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            t.course_id, t.student_id, t.topic_id, t.attempts_made, t.attempts_required,
            t.average_score_percent, int(t.approved), _iso(t.first_attempt_at),
            _iso(t.last_attempt_at), json.dumps(sorted(t.seen_question_ids)),
        ),
    )


# --- repositories ---


class _SqliteRepository:
    def __init__(self, db_path: str):
        self.db_path = db_path

    async def _run(self, fn, *args):
        return await asyncio.to_thread(fn, *args)


class SqliteQuestionRepository(_SqliteRepository, QuestionRepository):
    def _usage(self, conn, question_id: str) -> dict[str, int]:
        rows = conn.execute(
            "SELECT student_id, times_used FROM question_usage WHERE question_id = ?", (question_id,)
        ).fetchall()
        return {r["student_id"]: r["times_used"] for r in rows}

    def _query(self, sql: str, params: tuple) -> list[Question]:
        conn = get_connection(self.db_path)
        rows = conn.execute(sql, params).fetchall()
        questions = [_question_from_row(r, self._usage(conn, r["id"])) for r in rows]
        conn.close()
        return questions

    async def list_approved(self, course_id, topic_id):
        return await self._run(
            self._query,
            "SELECT * FROM questions WHERE course_id = ? AND topic_id = ? AND status = ? ORDER BY id",
            (course_id, topic_id, QuestionStatus.APPROVED.value),
        )

    async def list_by_status(self, course_id, status):
        return await self._run(
            self._query,
            "SELECT * FROM questions WHERE course_id = ? AND status = ? ORDER BY id",
            (course_id, status.value),
        )

    async def get(self, question_id):
        found = await self._run(self._query, "SELECT * FROM questions WHERE id = ?", (question_id,))
        return found[0] if found else None

    def _put(self, q: Question) -> None:
        conn = get_connection(self.db_path)
        conn.execute(
            """INSERT INTO questions (id, course_id, topic_id, text, options, status,
            explanation, source, review_notes) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET course_id = excluded.course_id, topic_id = excluded.topic_id,
            text = excluded.text, options = excluded.options, status = excluded.status,
            explanation = excluded.explanation, source = excluded.source,
            review_notes = excluded.review_notes""",
            (
                q.id, q.course_id, q.topic_id, q.text,
                json.dumps([o.__dict__ for o in q.options]),
                q.status.value, q.explanation, q.source, q.review_notes,
            ),
        )
        conn.commit()
        conn.close()

    async def put(self, question):
        await self._run(self._put, question)

    def _increment(self, question_id: str, student_id: str) -> None:
        conn = get_connection(self.db_path)
        exists = conn.execute("SELECT 1 FROM questions WHERE id = ?", (question_id,)).fetchone()
        if exists is None:
            conn.close()
            raise QuestionNotFound(question_id)
        conn.execute(
            """INSERT INTO question_usage (question_id, student_id, times_used) VALUES (?, ?, 1)
            ON CONFLICT(question_id, student_id) DO UPDATE SET times_used = times_used + 1""",
            (question_id, student_id),
        )
        conn.commit()
        conn.close()

    async def increment_usage(self, question_id, student_id):
        await self._run(self._increment, question_id, student_id)


class SqliteEnrollmentRepository(_SqliteRepository, EnrollmentRepository):
    def _get(self, course_id: str, student_id: str) -> Enrollment | None:
        conn = get_connection(self.db_path)
        row = conn.execute(
            "SELECT * FROM enrollments WHERE course_id = ? AND student_id = ?", (course_id, student_id)
        ).fetchone()
        conn.close()
        return _enrollment_from_row(row) if row else None

    async def get(self, course_id, student_id):
        return await self._run(self._get, course_id, student_id)

    def _put(self, enrollment: Enrollment) -> Enrollment:
        with transaction(self.db_path) as conn:
            _write_enrollment(conn, enrollment)
        return replace(enrollment, version=enrollment.version + 1)

    async def put(self, enrollment):
        return await self._run(self._put, enrollment)


class SqliteSessionRepository(_SqliteRepository, SessionRepository):
    def _select(self, sql: str, params: tuple) -> list[QuizSession]:
        conn = get_connection(self.db_path)
        rows = conn.execute(sql, params).fetchall()
        conn.close()
        return [_session_from_row(r) for r in rows]

    async def get(self, session_id):
        found = await self._run(self._select, "SELECT * FROM quiz_sessions WHERE id = ?", (session_id,))
        return found[0] if found else None

    def _put(self, session: QuizSession) -> None:
        conn = get_connection(self.db_path)
        _write_session(conn, session)
        conn.commit()
        conn.close()

    async def put(self, session):
        await self._run(self._put, session)

    async def list_for_student(self, student_id, course_id=None, topic_id=None):
        sql = "SELECT * FROM quiz_sessions WHERE student_id = ?"
        params = [student_id]
        if course_id is not None:
            sql += " AND course_id = ?"
            params.append(course_id)
        if topic_id is not None:
            sql += " AND topic_id = ?"
            params.append(topic_id)
        return await self._run(self._select, sql + " ORDER BY started_at", tuple(params))


class SqliteScheduleSource(_SqliteRepository, ScheduleSource):
    def _get(self, course_id: str) -> CourseSchedule | None:
        conn = get_connection(self.db_path)
        head = conn.execute("SELECT * FROM course_schedules WHERE course_id = ?", (course_id,)).fetchone()
        rows = conn.execute(
            "SELECT * FROM topic_windows WHERE course_id = ? ORDER BY position", (course_id,)
        ).fetchall()
        conn.close()
        if head is None:
            return None
        windows = {
            r["topic_id"]: TopicWindow(
                topic_id=r["topic_id"],
                title=r["title"] or "",
                start_at=_dt(r["start_at"]),
                end_at=_dt(r["end_at"]),
                required_attempts=r["required_attempts"],
                days_allocated=r["days_allocated"],
            )
            for r in rows
        }
        return CourseSchedule(
            course_id=course_id,
            topic_ids=[r["topic_id"] for r in rows],
            windows=windows,
            days_per_topic=head["days_per_topic"],
            remainder_days=head["remainder_days"],
        )

    async def get(self, course_id):
        return await self._run(self._get, course_id)

    def _put(self, schedule: CourseSchedule) -> None:
        with transaction(self.db_path) as conn:
            conn.execute("DELETE FROM topic_windows WHERE course_id = ?", (schedule.course_id,))
            conn.execute(
                """INSERT INTO course_schedules (course_id, days_per_topic, remainder_days) VALUES (?, ?, ?)
                ON CONFLICT(course_id) DO UPDATE SET days_per_topic = excluded.days_per_topic,
                remainder_days = excluded.remainder_days""",
                (schedule.course_id, schedule.days_per_topic, schedule.remainder_days),
            )
            for position, w in enumerate(schedule.ordered_windows()):
                conn.execute(
                    """INSERT INTO topic_windows (course_id, topic_id, position, title, start_at, end_at,
                    required_attempts, days_allocated) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        schedule.course_id, w.topic_id, position, w.title, _iso(w.start_at),
                        _iso(w.end_at), w.required_attempts, w.days_allocated,
                    ),
                )

    async def put(self, schedule):
        await self._run(self._put, schedule)


class SqliteExplanationViewedRepository(_SqliteRepository, ExplanationViewedRepository):
    def _is_viewed(self, student_id: str, topic_id: str) -> bool:
        conn = get_connection(self.db_path)
        row = conn.execute(
            "SELECT 1 FROM explanations_viewed WHERE student_id = ? AND topic_id = ?", (student_id, topic_id)
        ).fetchone()
        conn.close()
        return row is not None

    async def is_viewed(self, student_id, topic_id):
        return await self._run(self._is_viewed, student_id, topic_id)

    def _mark(self, student_id: str, topic_id: str, at: datetime) -> None:
        conn = get_connection(self.db_path)
        conn.execute(
            "INSERT OR REPLACE INTO explanations_viewed (student_id, topic_id, viewed_at) VALUES (?, ?, ?)",
            (student_id, topic_id, _iso(at)),
        )
        conn.commit()
        conn.close()

    async def mark_viewed(self, student_id, topic_id, at):
        await self._run(self._mark, student_id, topic_id, at)


class SqliteTopicStateRepository(_SqliteRepository, TopicStateRepository):
    def _select(self, sql: str, params: tuple) -> list[TopicCompletionState]:
        conn = get_connection(self.db_path)
        rows = conn.execute(sql, params).fetchall()
        conn.close()
        return [_topic_state_from_row(r) for r in rows]

    async def get(self, course_id, student_id, topic_id):
        found = await self._run(
            self._select,
            "SELECT * FROM topic_states WHERE course_id = ? AND student_id = ? AND topic_id = ?",
            (course_id, student_id, topic_id),
        )
        return found[0] if found else None

    async def list_for_student(self, course_id, student_id):
        return await self._run(
            self._select,
            "SELECT * FROM topic_states WHERE course_id = ? AND student_id = ?",
            (course_id, student_id),
        )

    def _put(self, state: TopicCompletionState) -> None:
        conn = get_connection(self.db_path)
        _write_topic_state(conn, state)
        conn.commit()
        conn.close()

    async def put(self, state):
        await self._run(self._put, state)


class SqliteStore(Store):
    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        self.questions = SqliteQuestionRepository(db_path)
        self.enrollments = SqliteEnrollmentRepository(db_path)
        self.sessions = SqliteSessionRepository(db_path)
        self.schedules = SqliteScheduleSource(db_path)
        self.explanations = SqliteExplanationViewedRepository(db_path)
        self.topic_states = SqliteTopicStateRepository(db_path)

    def _commit_finalization(self, enrollment, session, topic_state) -> Enrollment:
        with transaction(self.db_path) as conn:
            row = conn.execute("SELECT state FROM quiz_sessions WHERE id = ?", (session.id,)).fetchone()
            if row is not None and row["state"] == SessionState.FINALIZED.value:
                raise AlreadyFinalized(session.id)
            _write_enrollment(conn, enrollment)
            _write_session(conn, session)
            _write_topic_state(conn, topic_state)
        logger.debug("Committed finalization of %s", session.id)
        return replace(enrollment, version=enrollment.version + 1)

    async def commit_finalization(self, enrollment, session, topic_state):
        return await asyncio.to_thread(self._commit_finalization, enrollment, session, topic_state)
