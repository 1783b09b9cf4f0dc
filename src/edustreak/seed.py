"""Seed the database with the demo course, its schedule and approved questions."""
import json
from datetime import datetime
from pathlib import Path

from edustreak.courses import create_course
from edustreak.db import get_connection
from edustreak.importer import parse_question
from edustreak.models import QuestionStatus
from edustreak.repository import Store

CONTENT_DIR = Path(__file__).parent / "content"


def load_demo_course() -> dict:
    return json.loads((CONTENT_DIR / "demo_course.json").read_text())


def is_seeded(db_path: str) -> bool:
    """Check whether the database already holds a course schedule."""
    conn = get_connection(db_path)
    count = conn.execute("SELECT COUNT(*) FROM course_schedules").fetchone()[0]
    conn.close()
    return count > 0


async def seed_demo_course(store: Store, start_at: datetime) -> str:
    """Create the demo course starting at ``start_at`` with all its questions approved."""
    data = load_demo_course()
    course_id = data["course_id"]
    topics = [(t["id"], t["title"]) for t in data["topics"]]
    await create_course(store, course_id, topics, data["duration_days"], start_at)
    for i, raw in enumerate(data["questions"], 1):
        question = parse_question(
            {**raw, "id": f"{course_id}-q{i}"}, course_id, None, "instructor",
        )
        question.status = QuestionStatus.APPROVED
        await store.questions.put(question)
    return course_id
