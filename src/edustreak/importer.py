"""Import generated questions from JSON or YAML files as pending review."""
import json
import logging
import uuid
from pathlib import Path

import yaml

from edustreak.models import Option, Question, QuestionStatus
from edustreak.repository import Store

logger = logging.getLogger(__name__)


def read_question_file(file_path: str) -> dict:
    """Load a question batch. A bare list is treated as ``{"questions": [...]}``."""
    path = Path(file_path)
    suffix = path.suffix.lower()
    if suffix == ".json":
        data = json.loads(path.read_text())
    elif suffix in (".yaml", ".yml"):
        data = yaml.safe_load(path.read_text())
    else:
        raise ValueError(f"Unsupported question file type: {suffix or path.name}")
    if isinstance(data, list):
        data = {"questions": data}
    return data or {}


def categorize_question(text: str, topic_titles: dict[str, str]) -> str | None:
    """Pick the topic whose title words appear most often in the question. Returns topic_id or None."""
    text_lower = text.lower()
    scores = {}
    for topic_id, title in topic_titles.items():
        words = [w for w in title.lower().split() if len(w) > 3]
        scores[topic_id] = sum(1 for w in words if w in text_lower)
    if not scores:
        return None
    best = max(scores, key=scores.get)
    return best if scores[best] > 0 else None


def parse_question(raw: dict, course_id: str, topic_id: str | None, source: str) -> Question | None:
    text = (raw.get("text") or "").strip()
    options = raw.get("options") or []
    correct = raw.get("correct")
    if not text or len(options) < 2:
        return None
    if not isinstance(correct, int) or not 0 <= correct < len(options):
        return None
    return Question(
        id=raw.get("id") or uuid.uuid4().hex,
        course_id=course_id,
        topic_id=raw.get("topic_id") or topic_id,
        text=text,
        options=[Option(id=i, text=str(o), is_correct=(i == correct)) for i, o in enumerate(options)],
        status=QuestionStatus.PENDING_REVIEW,
        explanation=raw.get("explanation") or "",
        source=raw.get("source") or source,
    )


async def import_questions(
    store: Store,
    file_path: str,
    course_id: str | None = None,
    topic_id: str | None = None,
) -> dict:
    """Store every valid question of a file as ``pending_review``.

    Questions without a topic are matched to one by their text when the
    course has a schedule; anything still unplaced or malformed is skipped.
    """
    data = read_question_file(file_path)
    course_id = course_id or data.get("course_id")
    if not course_id:
        raise ValueError("A course id is required to import questions")
    topic_id = topic_id or data.get("topic_id")
    source = data.get("source", "generated")

    titles = {}
    schedule = await store.schedules.get(course_id)
    if schedule is not None:
        titles = {w.topic_id: w.title or w.topic_id for w in schedule.ordered_windows()}

    imported, skipped = 0, 0
    for raw in data.get("questions", []):
        question = parse_question(raw, course_id, topic_id, source)
        if question is not None and question.topic_id is None:
            question.topic_id = categorize_question(question.text, titles)
        if question is None or question.topic_id is None:
            logger.warning("Skipping malformed or unplaced question in %s: %r", file_path, raw.get("text"))
            skipped += 1
            continue
        await store.questions.put(question)
        imported += 1

    logger.info("Imported %d question(s) from %s (%d skipped)", imported, file_path, skipped)
    return {"filename": Path(file_path).name, "course_id": course_id, "imported": imported, "skipped": skipped}
