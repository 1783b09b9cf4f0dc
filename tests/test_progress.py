from datetime import datetime, timedelta, timezone

from edustreak.models import CourseProgress, Enrollment
from edustreak.progress import (
    get_progress_color, get_progress_label, next_streak, record_activity, summarize,
)

NOW = datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc)


def test_progress_label():
    assert get_progress_label(100) == "COMPLETE"
    assert get_progress_label(80) == "ON TRACK"
    assert get_progress_label(40) == "IN PROGRESS"
    assert get_progress_label(5) == "GETTING STARTED"


def test_progress_color():
    assert get_progress_color(100) == "green"
    assert get_progress_color(65) == "yellow"
    assert get_progress_color(29) == "red"


def test_first_pass_starts_streak():
    assert next_streak(0, None, NOW, passed=True) == 1
    assert next_streak(0, None, NOW, passed=False) == 0


def test_next_day_pass_extends_streak():
    assert next_streak(3, NOW - timedelta(days=1, hours=2), NOW, passed=True) == 4
    assert next_streak(3, NOW - timedelta(days=1, hours=2), NOW, passed=False) == 3


def test_same_day_keeps_streak():
    assert next_streak(3, NOW - timedelta(hours=2), NOW, passed=True) == 3
    assert next_streak(0, NOW - timedelta(hours=2), NOW, passed=True) == 1


def test_gap_resets_streak():
    assert next_streak(6, NOW - timedelta(days=3), NOW, passed=True) == 1
    assert next_streak(6, NOW - timedelta(days=3), NOW, passed=False) == 0


def test_record_activity_tracks_best_streak():
    e = Enrollment("c1", "s1", experience=40, streak_days=2, best_streak=2,
                   last_activity_at=NOW - timedelta(days=1))
    updated = record_activity(e, 85, True, NOW)
    assert updated.experience == 125
    assert updated.streak_days == 3
    assert updated.best_streak == 3
    assert updated.last_activity_at == NOW
    assert e.experience == 40


def test_summarize():
    progress = CourseProgress(total_topics=3, approved_topics=1, required_attempts=15, attempts_made=5, percent=33)
    summary = summarize(progress, Enrollment("c1", "s1", experience=200, streak_days=2, best_streak=4))
    assert summary["label"] == "IN PROGRESS"
    assert summary["quizzes_done"] == 5
    assert summary["best_streak"] == 4
    assert "experience" not in summarize(progress)
