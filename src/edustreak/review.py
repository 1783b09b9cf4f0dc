"""Post-quiz review: full revision and the list of missed questions."""
from edustreak.errors import QuestionNotFound
from edustreak.models import MistakeItem, MistakeReview, Option, Question, QuizSession, RevisionItem

NO_EXPLANATION = "No explanation available"
NO_ANSWER = "No answer recorded"
NO_CORRECT_ANSWER = "No correct answer defined"


def build_revision(session: QuizSession, questions: dict[str, Question]) -> list[RevisionItem]:
    items = []
    for answer in session.answers:
        question = questions.get(answer.question_id)
        if question is None:
            raise QuestionNotFound(answer.question_id)
        items.append(RevisionItem(
            question_id=question.id,
            text=question.text,
            options=question.options,
            selected_option=answer.selected_option,
            correct_option=question.correct_index,
            explanation=question.explanation or NO_EXPLANATION,
        ))
    return items


def option_text(options: list[Option], index: int, missing: str) -> str:
    if 0 <= index < len(options):
        return options[index].text
    return missing


def build_mistake_review(session: QuizSession, questions: dict[str, Question]) -> MistakeReview:
    mistakes = []
    for answer in session.answers:
        if answer.is_correct:
            continue
        question = questions.get(answer.question_id)
        if question is None:
            raise QuestionNotFound(answer.question_id)
        mistakes.append(MistakeItem(
            question_id=question.id,
            text=question.text,
            selected_text=option_text(question.options, answer.selected_option, NO_ANSWER),
            correct_text=option_text(question.options, question.correct_index, NO_CORRECT_ANSWER),
            explanation=question.explanation or NO_EXPLANATION,
        ))
    return MistakeReview(session_id=session.id, total_mistakes=len(mistakes), mistakes=mistakes)
