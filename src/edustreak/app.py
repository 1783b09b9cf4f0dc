"""Interactive CLI application."""
import asyncio
import getpass
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm, Prompt
from rich.table import Table

from edustreak.config import Settings, configure_logging, load_settings
from edustreak.courses import enroll_student
from edustreak.db import SqliteStore, init_db
from edustreak.errors import EdustreakError
from edustreak.importer import import_questions
from edustreak.models import SubmittedAnswer
from edustreak.progress import get_progress_color
from edustreak.review import NO_CORRECT_ANSWER, option_text
from edustreak.schedule import active_topic
from edustreak.seed import is_seeded, load_demo_course, seed_demo_course
from edustreak.sessions import QuizService

logger = logging.getLogger(__name__)
console = Console()


@dataclass
class CliState:
    student_id: str
    course_id: str
    last_quiz_id: str | None = None


def show_welcome(state: CliState):
    console.print(Panel(
        f"[bold]Course quizzes[/bold]\n[dim]{state.course_id} as {state.student_id}[/dim]",
        title="Welcome", border_style="blue",
    ))


def show_menu():
    console.print("\n[bold]Commands:[/bold]")
    commands = [
        ("join", "Enroll in the course"),
        ("plan", "Topic schedule and eligibility"),
        ("lives", "Lives left and next recovery"),
        ("explain", "Read a topic explanation"),
        ("quiz", "Take a quiz"),
        ("review", "Revise the last quiz"),
        ("mistakes", "Questions missed in the last quiz"),
        ("progress", "Course progress"),
        ("import", "Import generated questions"),
        ("approve", "Review pending questions"),
        ("quit", "Exit"),
    ]
    for cmd, desc in commands:
        console.print(f"  [cyan]{cmd:<14}[/cyan] {desc}")


async def pick_topic(service: QuizService, state: CliState) -> str | None:
    schedule = await service.store.schedules.get(state.course_id)
    if schedule is None:
        console.print("[yellow]This course has no schedule yet.[/yellow]")
        return None
    current = active_topic(schedule, service.clock.now())
    for w in schedule.ordered_windows():
        console.print(f"  [cyan]{w.topic_id}[/cyan]) {w.title or w.topic_id}")
    return Prompt.ask(
        "Topic", choices=schedule.topic_ids, default=current.topic_id if current else schedule.topic_ids[0],
    )


async def cmd_join(service: QuizService, state: CliState):
    enrollment = await enroll_student(
        service.store, state.course_id, state.student_id, service.clock.now(), service.settings,
    )
    console.print(f"[green]Enrolled with {enrollment.lives_current}/{enrollment.lives_max} lives.[/green]")


async def cmd_plan(service: QuizService, state: CliState):
    schedule = await service.store.schedules.get(state.course_id)
    if schedule is None:
        console.print("[yellow]This course has no schedule yet.[/yellow]")
        return
    now = service.clock.now()
    table = Table(title=f"{state.course_id} schedule")
    table.add_column("Topic")
    table.add_column("Opens")
    table.add_column("Closes")
    table.add_column("Quizzes", justify="right")
    table.add_column("Status")
    for w in schedule.ordered_windows():
        verdict = await service.check_eligibility(state.course_id, w.topic_id, state.student_id)
        marker = " ←" if w.contains(now) else ""
        status = "[green]Open[/green]" if verdict.eligible else f"[dim]{verdict.message}[/dim]"
        table.add_row(
            (w.title or w.topic_id) + marker,
            w.start_at.strftime("%Y-%m-%d"),
            w.end_at.strftime("%Y-%m-%d"),
            str(w.required_attempts),
            status,
        )
    console.print(table)


async def cmd_lives(service: QuizService, state: CliState):
    status = await service.get_lives_status(state.course_id, state.student_id)
    hearts = "♥" * status.current + "♡" * (status.max - status.current)
    line = f"Lives: [red]{hearts}[/red] {status.current}/{status.max}"
    if status.minutes_to_next:
        line += f"  [dim](next in {status.minutes_to_next} min)[/dim]"
    console.print(line)


async def cmd_explain(service: QuizService, state: CliState):
    topic_id = await pick_topic(service, state)
    if topic_id is None:
        return
    schedule = await service.store.schedules.get(state.course_id)
    title = schedule.window(topic_id).title or topic_id
    console.print(Panel(f"Study the material for [bold]{title}[/bold] before the quiz.", title="Explanation"))
    Prompt.ask("[dim]Press Enter when done reading[/dim]", default="")
    await service.mark_explanation_viewed(state.student_id, topic_id)
    console.print("[green]Explanation marked as read.[/green]")


def run_quiz_session(started) -> list[SubmittedAnswer]:
    answers = []
    console.print(f"\n[bold]Quiz:[/bold] {len(started.questions)} questions\n")
    for q in started.questions:
        console.print(f"[bold]Q{q.order}.[/bold] {q.text}\n")
        for i, option in enumerate(q.options):
            console.print(f"  [cyan]{i}) [/cyan]{option.text}")
        began = time.monotonic()
        choice = Prompt.ask("\nYour answer", choices=[str(i) for i in range(len(q.options))])
        answers.append(SubmittedAnswer(q.id, int(choice), int(time.monotonic() - began)))
        console.print()
    return answers


def show_result(result):
    color = "green" if result.passed else "red"
    b = result.bonuses
    console.print(Panel(
        f"[{color}]{result.correct} correct, {result.incorrect} wrong ({result.percent}%)[/{color}]\n"
        f"XP +{result.xp_awarded}  [dim](base {b.base}, speed {b.speed}, "
        f"perfect {b.perfect}, first time {b.first_time})[/dim]\n"
        f"Lives left: {result.lives_remaining}",
        title="Result",
    ))


async def cmd_quiz(service: QuizService, state: CliState):
    topic_id = await pick_topic(service, state)
    if topic_id is None:
        return
    started = await service.start_quiz(state.course_id, topic_id, state.student_id)
    state.last_quiz_id = started.session_id
    answers = run_quiz_session(started)
    result = await service.finalize_quiz(started.session_id, answers, state.student_id)
    show_result(result)


async def cmd_review(service: QuizService, state: CliState):
    if not state.last_quiz_id:
        console.print("[yellow]Take a quiz first.[/yellow]")
        return
    for item in await service.get_revision(state.last_quiz_id, state.student_id):
        ok = item.selected_option == item.correct_option
        mark = "[green]✓[/green]" if ok else "[red]✗[/red]"
        console.print(f"{mark} {item.text}")
        answer = option_text(item.options, item.correct_option, NO_CORRECT_ANSWER)
        console.print(f"   [dim]Answer: {answer}. {item.explanation}[/dim]")


async def cmd_mistakes(service: QuizService, state: CliState):
    if not state.last_quiz_id:
        console.print("[yellow]Take a quiz first.[/yellow]")
        return
    review = await service.get_mistake_review(state.last_quiz_id, state.student_id)
    if not review.mistakes:
        console.print("[green]No mistakes in your last quiz![/green]")
        return
    table = Table(title=f"{review.total_mistakes} mistake(s)")
    table.add_column("Question")
    table.add_column("Your answer", style="red")
    table.add_column("Correct", style="green")
    for m in review.mistakes:
        table.add_row(m.text, m.selected_text, m.correct_text)
    console.print(table)


async def cmd_progress(service: QuizService, state: CliState):
    summary = await service.course_progress(state.course_id, state.student_id)
    color = get_progress_color(summary["percent"])
    bar_filled = summary["percent"] // 5
    bar = f"[{color}]{'█' * bar_filled}{'░' * (20 - bar_filled)}[/{color}]"
    console.print(f"\n  Progress: [bold]{summary['percent']}%[/bold] {bar} [{color}]{summary['label']}[/{color}]")
    console.print(
        f"  Topics approved: [bold]{summary['topics_approved']}/{summary['topics']}[/bold]  |  "
        f"Quizzes: [bold]{summary['quizzes_done']}/{summary['quizzes_required']}[/bold]  |  "
        f"XP: [bold]{summary['experience']}[/bold]  |  "
        f"Streak: [bold]{summary['streak_days']}[/bold] (best {summary['best_streak']})"
    )


async def cmd_import(service: QuizService, state: CliState):
    file_path = Prompt.ask("File path")
    if not Path(file_path).exists():
        console.print(f"[red]File not found: {file_path}[/red]")
        return
    result = await import_questions(service.store, file_path, course_id=state.course_id)
    console.print(
        f"[green]Imported {result['imported']} question(s) from {result['filename']} "
        f"for review ({result['skipped']} skipped)[/green]"
    )


async def cmd_approve(service: QuizService, state: CliState):
    pending = await service.bank.pending(state.course_id)
    if not pending:
        console.print("[green]No questions waiting for review.[/green]")
        return
    for q in pending:
        console.print(Panel(q.text, title=f"{q.topic_id} ({q.source})", border_style="cyan"))
        for i, option in enumerate(q.options):
            mark = " [green]✓[/green]" if option.is_correct else ""
            console.print(f"  {i}) {option.text}{mark}")
        if Confirm.ask("Approve?", default=True):
            await service.bank.approve(q.id)
        else:
            await service.bank.reject(q.id, Prompt.ask("Notes", default="") or None)


COMMANDS = {
    "join": cmd_join,
    "plan": cmd_plan,
    "lives": cmd_lives,
    "explain": cmd_explain,
    "quiz": cmd_quiz,
    "review": cmd_review,
    "mistakes": cmd_mistakes,
    "progress": cmd_progress,
    "import": cmd_import,
    "approve": cmd_approve,
}


def run_command(service: QuizService, state: CliState, choice: str) -> bool:
    """Run one menu command. Returns False when the user asked to quit."""
    if choice in ("quit", "exit", "q"):
        return False
    handler = COMMANDS.get(choice)
    if handler is None:
        console.print("[red]Unknown command. Try again.[/red]")
        return True
    try:
        asyncio.run(handler(service, state))
    except EdustreakError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
    return True


def build_service(settings: Settings) -> QuizService:
    init_db(settings.db_path)
    store = SqliteStore(settings.db_path)
    service = QuizService(store, settings=settings)
    if not is_seeded(settings.db_path):
        console.print("[dim]Setting up the demo course...[/dim]")
        asyncio.run(seed_demo_course(store, service.clock.now()))
    return service


def main():
    settings = load_settings()
    configure_logging(settings.log_level)
    service = build_service(settings)
    state = CliState(
        student_id=Prompt.ask("Student id", default=getpass.getuser()),
        course_id=load_demo_course()["course_id"],
    )
    show_welcome(state)

    while True:
        show_menu()
        choice = Prompt.ask("\n[bold]>[/bold]", default="quiz").strip().lower()
        try:
            if not run_command(service, state, choice):
                console.print("[dim]See you tomorrow![/dim]")
                break
        except KeyboardInterrupt:
            console.print("\n[dim]Use 'quit' to exit.[/dim]")
        except Exception as e:
            logger.exception("Command %s failed", choice)
            console.print(f"[red]Error: {e}[/red]")


if __name__ == "__main__":
    main()
