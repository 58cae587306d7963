"""
Report generation for aggregated grades.

Renders an AggregatedGrade as JSON (for storage and tooling) or Markdown
(for instructors reading the result).
"""

import json
from enum import Enum
from pathlib import Path

from patient_grading.grading.aggregator import format_points, get_grading_summary
from patient_grading.models import AggregatedGrade


class ReportFormat(str, Enum):
    """Output format for grading reports."""

    JSON = "json"
    MARKDOWN = "markdown"


class ReportGenerator:
    """Renders and saves grading reports."""

    SUFFIXES = {".json": ReportFormat.JSON, ".md": ReportFormat.MARKDOWN}

    def generate(self, grade: AggregatedGrade, report_format: ReportFormat = ReportFormat.JSON) -> str:
        """Render a report in the given format."""
        if report_format == ReportFormat.MARKDOWN:
            return self._to_markdown(grade)
        return self._to_json(grade)

    def save(
        self,
        grade: AggregatedGrade,
        output_path: Path,
        report_format: ReportFormat | None = None,
    ) -> Path:
        """
        Write a report to disk.

        The format is inferred from the file suffix when not given;
        unknown suffixes fall back to JSON.
        """
        fmt = report_format or self.SUFFIXES.get(output_path.suffix.lower(), ReportFormat.JSON)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(self.generate(grade, fmt), encoding="utf-8")
        return output_path

    def _to_json(self, grade: AggregatedGrade) -> str:
        payload = {
            "summary": get_grading_summary(grade),
            "aggregated_grade": grade.model_dump(mode="json"),
        }
        return json.dumps(payload, indent=2, ensure_ascii=False)

    def _to_markdown(self, grade: AggregatedGrade) -> str:
        lines = [
            "# Grading Report",
            "",
            "## Summary",
            "",
            f"- **Score:** {format_points(grade.total_score)} / {format_points(grade.max_score)} "
            f"({grade.percentage_score}%)",
            f"- **Judges:** {', '.join(jg.model for jg in grade.judge_grades)}",
            f"- **Disagreement threshold:** {grade.disagreement_threshold}",
            f"- **Requires review:** {'yes' if grade.requires_review else 'no'}",
        ]
        if grade.flagged_categories:
            lines.append(f"- **Flagged categories:** {', '.join(grade.flagged_categories)}")

        lines += [
            "",
            "## Category Breakdown",
            "",
            "| Category | Average | Max | Disagreement | Judge Scores |",
            "|---|---:|---:|---:|---|",
        ]
        for score in grade.average_scores:
            judges = "; ".join(f"{js.model}: {format_points(js.score)}" for js in score.judge_scores)
            flag = " ⚠️" if score.category in grade.flagged_categories else ""
            lines.append(
                f"| {score.category}{flag} | {format_points(score.average_score)} "
                f"| {format_points(score.max_points)} "
                f"| {int(score.disagreement_percent * 100)}% | {judges} |"
            )

        lines += ["", "## Judge Feedback", ""]
        for judge_grade in grade.judge_grades:
            lines.append(
                f"### {judge_grade.model} ({format_points(judge_grade.total_score)} / "
                f"{format_points(judge_grade.max_score)})"
            )
            lines.append("")
            lines.append(judge_grade.overall_feedback or "_No feedback provided._")
            lines.append("")

        return "\n".join(lines)
