"""
Rubric parser module.

Parses rubric JSON into structured Rubric models. Accepts both the
camelCase keys exported by the web application (``maxPoints``,
``totalPoints``, ``passingThreshold``) and snake_case keys.
"""

import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from patient_grading.models import Rubric
from patient_grading.rubric.templates import TEMPLATES, get_template

_KEY_ALIASES = {
    "maxPoints": "max_points",
    "totalPoints": "total_points",
    "passingThreshold": "passing_threshold",
}


class RubricParseError(Exception):
    """Raised when rubric parsing fails."""

    def __init__(self, message: str, source: str | None = None):
        self.source = source
        if source:
            message = f"{source}: {message}"
        super().__init__(message)


class RubricParser:
    """
    Parses rubric documents into the Rubric model.

    Supports:
    1. A JSON object with ``categories`` and optional ``totalPoints``
    2. A bare JSON list of categories (total = sum of category points)
    3. The name of a built-in template
    """

    def parse(self, content: str, title: str = "Grading Rubric", source: str | None = None) -> Rubric:
        """
        Parse rubric JSON content.

        Args:
            content: Raw JSON text.
            title: Title used when the document has none.
            source: File name for error messages.

        Returns:
            Structured Rubric object.

        Raises:
            RubricParseError: If parsing fails.
        """
        if not content or not content.strip():
            raise RubricParseError("Rubric content is empty", source)

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise RubricParseError(f"Invalid JSON: {e}", source) from e

        return self.parse_data(data, title, source)

    def parse_data(self, data: Any, title: str = "Grading Rubric", source: str | None = None) -> Rubric:
        """Build a Rubric from already-decoded JSON data."""
        if isinstance(data, list):
            data = {"categories": data}
        if not isinstance(data, dict):
            raise RubricParseError("Rubric must be a JSON object or a list of categories", source)

        normalized = self._normalize_keys(data)
        categories = normalized.get("categories")
        if not isinstance(categories, list) or not categories:
            raise RubricParseError("Rubric has no categories", source)

        normalized.setdefault("title", title)
        if normalized.get("total_points") is None:
            try:
                normalized["total_points"] = sum(
                    (Decimal(str(c.get("max_points", 0))) for c in categories if isinstance(c, dict)),
                    Decimal(0),
                )
            except InvalidOperation as e:
                raise RubricParseError(f"Invalid category points: {e}", source) from e

        try:
            return Rubric.model_validate(normalized)
        except ValidationError as e:
            raise RubricParseError(f"Invalid rubric: {e}", source) from e

    def load(self, reference: str | Path) -> Rubric:
        """
        Load a rubric from a JSON file path or a template name.

        Raises:
            RubricParseError: If neither a readable file nor a known template.
        """
        path = Path(reference)
        if path.is_file():
            try:
                content = path.read_text(encoding="utf-8")
            except OSError as e:
                raise RubricParseError(f"Could not read file: {e}", str(path)) from e
            return self.parse(content, title=path.stem, source=str(path))

        try:
            return get_template(str(reference))
        except KeyError:
            known = ", ".join(sorted(TEMPLATES))
            raise RubricParseError(
                f"Not a rubric file or template name (templates: {known})", str(reference)
            ) from None

    def _normalize_keys(self, value: Any) -> Any:
        """Rename camelCase keys recursively."""
        if isinstance(value, dict):
            return {_KEY_ALIASES.get(k, k): self._normalize_keys(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._normalize_keys(v) for v in value]
        return value
