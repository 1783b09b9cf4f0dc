"""Answer evaluation and experience points."""
import logging

from edustreak.errors import QuestionNotFound
from edustreak.models import EvaluatedAnswer, Question, QuizSession, SubmittedAnswer, XPBreakdown

logger = logging.getLogger(__name__)

XP_PER_CORRECT = 10
SPEED_THRESHOLD_SECONDS = 30
SPEED_BONUS = 10
PERFECT_BONUS = 15
FIRST_TIME_BONUS = 5
FIRST_TIME_MIN_PERCENT = 70


def evaluate(
    session: QuizSession,
    answers: list[SubmittedAnswer],
    questions: dict[str, Question],
) -> list[EvaluatedAnswer]:
    """Mark each submitted answer against the canonical correct option.

    Raises QuestionNotFound for an answer whose question is unknown or was
    not part of the session; nothing is evaluated in that case. A repeated
    answer to the same question keeps only the first one.
    """
    in_session = set(session.question_ids)
    evaluated = []
    answered = set()
    for answer in answers:
        question = questions.get(answer.question_id)
        if question is None or answer.question_id not in in_session:
            raise QuestionNotFound(answer.question_id)
        if answer.question_id in answered:
            logger.warning("Ignoring repeated answer to %s in quiz %s", answer.question_id, session.id)
            continue
        answered.add(answer.question_id)
        evaluated.append(EvaluatedAnswer(
            question_id=answer.question_id,
            selected_option=answer.selected_option,
            time_seconds=answer.time_seconds,
            is_correct=answer.selected_option == question.correct_index,
        ))
    return evaluated


def count_results(evaluated: list[EvaluatedAnswer]) -> tuple[int, int]:
    correct = sum(1 for a in evaluated if a.is_correct)
    return correct, len(evaluated) - correct


def percent_correct(correct: int, answered: int) -> int:
    if answered == 0:
        return 0
    return (correct * 100) // answered


def average_time(evaluated: list[EvaluatedAnswer]) -> tuple[int, float]:
    total = sum(a.time_seconds for a in evaluated)
    if not evaluated:
        return total, 0.0
    return total, total / len(evaluated)


def compute_xp(
    correct_count: int,
    incorrect_count: int,
    average_time_seconds: float,
    is_first_approval: bool,
    percent: int,
) -> XPBreakdown:
    return XPBreakdown(
        base=correct_count * XP_PER_CORRECT,
        speed=SPEED_BONUS if average_time_seconds < SPEED_THRESHOLD_SECONDS else 0,
        perfect=PERFECT_BONUS if incorrect_count == 0 and correct_count > 0 else 0,
        first_time=FIRST_TIME_BONUS if is_first_approval and percent >= FIRST_TIME_MIN_PERCENT else 0,
    )


def is_first_approval(previous_sessions: list[QuizSession]) -> bool:
    """True when no earlier finalized session of the topic got anything right."""
    return not any(s.is_finalized and s.correct_count > 0 for s in previous_sessions)
