"""
Patient Grader CLI Application.

Provides a command-line interface for grading simulated patient interview
transcripts with several LLM judges and for aggregating captured judge grades.
"""

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from patient_grading.config import JudgeFailurePolicy, MissingCategoryPolicy, get_settings
from patient_grading.grading import (
    DEFAULT_DISAGREEMENT_THRESHOLD,
    AggregationError,
    GradeAggregator,
    JudgeError,
    JudgeInvoker,
    LLMClient,
)
from patient_grading.grading.aggregator import format_points
from patient_grading.models import AggregatedGrade, GradingInput, JudgeGrade, PatientContext, TranscriptMessage
from patient_grading.output import ReportFormat, ReportGenerator
from patient_grading.rubric import RubricParseError, RubricParser, RubricValidationError, RubricValidator

app = typer.Typer(
    name="patient-grader",
    help="Multi-judge AI grading of simulated patient interviews",
    add_completion=False,
)

console = Console()

logger = logging.getLogger("patient_grading")

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")


def _configure_logging(verbose: bool, level: str = "WARNING") -> None:
    """Route package logs through rich."""
    logger.handlers.clear()
    handler = RichHandler(console=Console(stderr=True), show_path=False)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else level)


def _snake_keys(value: Any) -> Any:
    """Convert camelCase keys (as exported by the web application) to snake_case."""
    if isinstance(value, dict):
        return {_CAMEL.sub("_", k).lower(): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(v) for v in value]
    return value


def _read_json(path: Path, label: str) -> Any:
    if not path.exists():
        console.print(f"[red]Error:[/red] {label} file not found: {path}")
        raise typer.Exit(1)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error:[/red] Could not read {label} file {path}: {e}")
        raise typer.Exit(1)


def _load_transcript(path: Path) -> tuple[tuple[TranscriptMessage, ...], PatientContext | None]:
    """Transcript files hold a message list, or an object with ``transcript`` and ``patientContext``."""
    data = _snake_keys(_read_json(path, "Transcript"))
    if isinstance(data, list):
        data = {"transcript": data}

    try:
        messages = tuple(TranscriptMessage.model_validate(m) for m in data.get("transcript", []))
        context_data = data.get("patient_context")
        context = PatientContext.model_validate(context_data) if context_data else None
    except (AttributeError, ValidationError) as e:
        console.print(f"[red]Error:[/red] Invalid transcript file {path}: {e}")
        raise typer.Exit(1)

    if not messages:
        console.print(f"[red]Error:[/red] Transcript file {path} has no messages")
        raise typer.Exit(1)
    return messages, context


def _load_judge_grades(path: Path) -> list[JudgeGrade]:
    data = _snake_keys(_read_json(path, "Judge grades"))
    if isinstance(data, dict):
        data = data.get("judge_grades", [])
    try:
        return [JudgeGrade.model_validate(item) for item in data]
    except (TypeError, ValidationError) as e:
        console.print(f"[red]Error:[/red] Invalid judge grades file {path}: {e}")
        raise typer.Exit(1)


def _emit_report(grade: AggregatedGrade, output: Optional[Path], report_format: ReportFormat) -> None:
    generator = ReportGenerator()
    if output:
        saved_path = generator.save(grade, output, report_format)
        console.print(f"\n[green]Report saved to:[/green] {saved_path}")
    else:
        console.print("\n" + generator.generate(grade, report_format))


@app.command()
def grade(
    rubric: Annotated[str, typer.Argument(help="Rubric JSON file or template name")],
    transcript_file: Annotated[Path, typer.Argument(help="Transcript JSON file")],
    model: Annotated[
        Optional[list[str]],
        typer.Option("--model", "-m", help="Judge model (repeatable); defaults to configured judges"),
    ] = None,
    threshold: Annotated[
        Optional[float],
        typer.Option("--threshold", "-t", min=0.0, max=1.0, help="Disagreement threshold (0-1)"),
    ] = None,
    fail_soft: Annotated[
        bool,
        typer.Option("--fail-soft", help="Continue with the judges that succeed"),
    ] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Output file path for the report"),
    ] = None,
    format: Annotated[
        Optional[ReportFormat],
        typer.Option("--format", "-f", help="Report format"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Grade a transcript with every judge and aggregate their scores.

    Categories where the judges disagree by more than the threshold are
    flagged for instructor review.
    """
    try:
        settings = get_settings()
        _configure_logging(verbose, settings.log_level)

        parsed_rubric = RubricParser().load(rubric)
        messages, patient_context = _load_transcript(transcript_file)
        grading_input = GradingInput(
            transcript=messages, rubric=parsed_rubric, patient_context=patient_context
        )

        client = LLMClient(settings)
        invoker = JudgeInvoker(
            resolver=client.resolve_judge,
            default_models=settings.judge_models,
            timeout=settings.judge_timeout_seconds,
            failure_policy=JudgeFailurePolicy.FAIL_SOFT if fail_soft else settings.judge_failure_policy,
        )
        aggregator = GradeAggregator(
            threshold=threshold if threshold is not None else settings.disagreement_threshold,
            missing_category_policy=settings.missing_category_policy,
        )

        judges = model or list(settings.judge_models)
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            progress.add_task(f"Grading with {len(judges)} judges: {', '.join(judges)}...", total=None)
            judge_grades = asyncio.run(invoker.run_all_judges(grading_input, judges))

        result = aggregator.aggregate(judge_grades, rubric=parsed_rubric)
        _display_results(result, verbose)

        if output or format:
            _emit_report(result, output, format or ReportFormat.JSON)

    except ValidationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1)
    except RubricParseError as e:
        console.print(f"[red]Rubric Parse Error:[/red] {e}")
        raise typer.Exit(1)
    except JudgeError as e:
        console.print(f"[red]Judge Error:[/red] Grading could not be completed. {e}")
        raise typer.Exit(1)
    except AggregationError as e:
        console.print(f"[red]Aggregation Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def aggregate(
    judge_grades_file: Annotated[Path, typer.Argument(help="JSON file with captured judge grades")],
    threshold: Annotated[
        float,
        typer.Option("--threshold", "-t", min=0.0, max=1.0, help="Disagreement threshold (0-1)"),
    ] = float(DEFAULT_DISAGREEMENT_THRESHOLD),
    rubric: Annotated[
        Optional[str],
        typer.Option("--rubric", "-r", help="Rubric JSON file or template name for category order"),
    ] = None,
    strict_categories: Annotated[
        bool,
        typer.Option("--strict-categories", help="Fail when a judge omitted a category"),
    ] = False,
    output: Annotated[
        Optional[Path],
        typer.Option("--output", "-o", help="Output file path for the report"),
    ] = None,
    format: Annotated[
        Optional[ReportFormat],
        typer.Option("--format", "-f", help="Report format"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show detailed output"),
    ] = False,
) -> None:
    """
    Aggregate previously captured judge grades without calling any model.
    """
    _configure_logging(verbose)
    try:
        judge_grades = _load_judge_grades(judge_grades_file)
        parsed_rubric = RubricParser().load(rubric) if rubric else None

        policy = MissingCategoryPolicy.STRICT if strict_categories else MissingCategoryPolicy.PERMISSIVE
        result = GradeAggregator(threshold, policy).aggregate(judge_grades, rubric=parsed_rubric)
        _display_results(result, verbose)

        if output or format:
            _emit_report(result, output, format or ReportFormat.JSON)

    except RubricParseError as e:
        console.print(f"[red]Rubric Parse Error:[/red] {e}")
        raise typer.Exit(1)
    except AggregationError as e:
        console.print(f"[red]Aggregation Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def validate_rubric(
    rubric: Annotated[str, typer.Argument(help="Rubric JSON file or template name")],
) -> None:
    """
    Validate a rubric without performing grading.
    """
    try:
        parsed = RubricParser().load(rubric)
        validator = RubricValidator()
        is_valid, issues = validator.validate(parsed)

        console.print(Panel(f"[bold]{parsed.title}[/bold]", title="Rubric"))

        table = Table(title="Categories")
        table.add_column("Name", style="cyan")
        table.add_column("Points", justify="right")
        table.add_column("Description")

        for category in parsed.categories:
            table.add_row(category.name, format_points(category.max_points), category.description[:50])

        console.print(table)
        console.print(f"\n[bold]Total Points:[/bold] {format_points(parsed.total_points)}")

        if is_valid:
            console.print("\n[green]✓ Rubric is valid[/green]")
        else:
            console.print("\n[yellow]⚠ Validation issues found:[/yellow]")
            for issue in issues:
                console.print(f"  • {issue}")
            raise typer.Exit(1)

    except RubricParseError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except RubricValidationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def health() -> None:
    """
    Check if the judge endpoint is reachable.
    """
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print(f"[red]Configuration Error:[/red] {e}")
        raise typer.Exit(1)

    console.print("[bold]Patient Grader Health Check[/bold]\n")
    console.print("[dim]Checking configuration...[/dim]")
    console.print(f"  API Base URL: {settings.llm_base_url}")
    console.print(f"  Judges: {', '.join(settings.judge_models)}")
    console.print(f"  Disagreement Threshold: {settings.disagreement_threshold}")
    console.print(f"  Missing Category Policy: {settings.missing_category_policy.value}")
    console.print(f"  Judge Failure Policy: {settings.judge_failure_policy.value}")

    console.print("\n[dim]Checking API connectivity...[/dim]")
    if asyncio.run(LLMClient(settings).health_check()):
        console.print("[green]✓ API is reachable[/green]")
    else:
        console.print("[red]✗ API is not reachable[/red]")
        raise typer.Exit(1)

    console.print("\n[green]All systems operational[/green]")


def _display_results(result: AggregatedGrade, verbose: bool = False) -> None:
    """Display an aggregated grade as a score panel and category table."""
    score_color = (
        "green" if result.percentage_score >= 70 else "yellow" if result.percentage_score >= 50 else "red"
    )
    console.print(
        Panel(
            f"[{score_color}][bold]{format_points(result.total_score)} / "
            f"{format_points(result.max_score)}[/bold] "
            f"({result.percentage_score}%)[/{score_color}]",
            title="Final Score",
        )
    )

    if result.requires_review:
        console.print(
            "[yellow]⚠ Requires review - judges disagreed on: "
            f"{', '.join(result.flagged_categories)}[/yellow]"
        )

    table = Table(title="Category Breakdown")
    table.add_column("Category", style="cyan")
    table.add_column("Average", justify="right")
    table.add_column("Disagreement", justify="right")
    for judge_grade in result.judge_grades:
        table.add_column(judge_grade.model, justify="right")

    for score in result.average_scores:
        flagged = score.category in result.flagged_categories
        table.add_row(
            score.category,
            f"{format_points(score.average_score)}/{format_points(score.max_points)}",
            f"[yellow]{score.disagreement_percent:.0%}[/yellow]" if flagged else f"{score.disagreement_percent:.0%}",
            *(format_points(js.score) for js in score.judge_scores),
        )

    console.print(table)

    if verbose:
        for judge_grade in result.judge_grades:
            console.print(Panel(judge_grade.overall_feedback or "-", title=f"{judge_grade.model} feedback"))


if __name__ == "__main__":
    app()
