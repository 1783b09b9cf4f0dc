# tests/test_importer.py
import asyncio
import json

import pytest

from edustreak.courses import create_course
from edustreak.importer import categorize_question, import_questions, parse_question, read_question_file
from edustreak.models import QuestionStatus


def test_read_json_file(tmp_path):
    f = tmp_path / "batch.json"
    f.write_text('{"course_id": "c1", "questions": []}')
    assert read_question_file(str(f))["course_id"] == "c1"


def test_read_yaml_list(tmp_path):
    f = tmp_path / "batch.yaml"
    f.write_text("- text: What is 1 + 1?\n  options: ['1', '2']\n  correct: 1\n")
    data = read_question_file(str(f))
    assert data["questions"][0]["correct"] == 1


def test_read_unsupported_file(tmp_path):
    f = tmp_path / "notes.txt"
    f.write_text("hello")
    with pytest.raises(ValueError):
        read_question_file(str(f))


def test_categorize_question():
    titles = {"t1": "Variables and types", "t2": "Loops and iteration"}
    assert categorize_question("Which loops support iteration with else?", titles) == "t2"
    assert categorize_question("Something else entirely", titles) is None


def test_parse_question():
    q = parse_question({"text": " 2 + 2? ", "options": ["3", "4"], "correct": 1}, "c1", "t1", "generated")
    assert q.text == "2 + 2?"
    assert q.correct_index == 1
    assert q.status == QuestionStatus.PENDING_REVIEW
    assert q.source == "generated"


@pytest.mark.parametrize("raw", [
    {"text": "", "options": ["a", "b"], "correct": 0},
    {"text": "Q", "options": ["a"], "correct": 0},
    {"text": "Q", "options": ["a", "b"], "correct": 2},
    {"text": "Q", "options": ["a", "b"]},
])
def test_parse_malformed_question(raw):
    assert parse_question(raw, "c1", "t1", "generated") is None


def test_import_questions(store, clock, tmp_path):
    asyncio.run(create_course(store, "c1", [("t1", "Variables"), ("t2", "Loops")], 4, clock.now()))
    f = tmp_path / "generated.json"
    f.write_text(json.dumps({
        "course_id": "c1",
        "questions": [
            {"text": "Which loops exist?", "options": ["for", "goto"], "correct": 0},
            {"text": "Pick one", "topic_id": "t1", "options": ["a", "b"], "correct": 1},
            {"text": "Unplaced", "options": ["a", "b"], "correct": 1},
            {"text": "Broken", "options": ["a"], "correct": 0},
        ],
    }))

    result = asyncio.run(import_questions(store, str(f)))
    assert result == {"filename": "generated.json", "course_id": "c1", "imported": 2, "skipped": 2}

    pending = asyncio.run(store.questions.list_by_status("c1", QuestionStatus.PENDING_REVIEW))
    assert sorted(q.topic_id for q in pending) == ["t1", "t2"]
    assert asyncio.run(store.questions.list_approved("c1", "t1")) == []


def test_import_needs_course(store, tmp_path):
    f = tmp_path / "generated.json"
    f.write_text('[{"text": "Q", "options": ["a", "b"], "correct": 0}]')
    with pytest.raises(ValueError):
        asyncio.run(import_questions(store, str(f)))
