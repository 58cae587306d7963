"""
Submission storage.

Defines the interface the grading orchestrator persists submissions
through, with an in-memory store and a JSON-file store.
"""

import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from patient_grading.models import Submission

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[A-Za-z0-9_-]+")


class StorageError(Exception):
    """Raised when a submission cannot be read or written."""

    def __init__(self, message: str, submission_id: str, cause: Exception | None = None):
        self.submission_id = submission_id
        self.cause = cause
        super().__init__(f"Submission '{submission_id}': {message}")


class SubmissionStore(ABC):
    """
    Abstract base class for submission stores.

    ``save`` replaces the stored record wholesale; there is no merge.
    """

    @abstractmethod
    def get(self, submission_id: str) -> Submission | None:
        """Return the submission, or None if it does not exist."""
        ...

    @abstractmethod
    def save(self, submission: Submission) -> None:
        """Insert or replace a submission."""
        ...


class InMemorySubmissionStore(SubmissionStore):
    """Dictionary-backed store, for tests and one-shot CLI runs."""

    def __init__(self, submissions: list[Submission] | None = None):
        self._submissions: dict[str, Submission] = {}
        for submission in submissions or []:
            self.save(submission)

    def get(self, submission_id: str) -> Submission | None:
        return self._submissions.get(submission_id)

    def save(self, submission: Submission) -> None:
        self._submissions[submission.id] = submission


class JsonFileSubmissionStore(SubmissionStore):
    """
    Stores each submission as ``<directory>/<id>.json``.

    Writes go to a temporary file first and are moved into place, so a
    reader never sees a half-written record.
    """

    def __init__(self, directory: Path):
        self._directory = directory
        self._directory.mkdir(parents=True, exist_ok=True)

    def _path(self, submission_id: str) -> Path:
        if not _SAFE_ID.fullmatch(submission_id):
            raise StorageError("Invalid submission id", submission_id)
        return self._directory / f"{submission_id}.json"

    def get(self, submission_id: str) -> Submission | None:
        path = self._path(submission_id)
        if not path.exists():
            return None

        try:
            return Submission.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StorageError("Could not load submission", submission_id, e) from e

    def save(self, submission: Submission) -> None:
        path = self._path(submission.id)
        tmp_path = path.with_suffix(".json.tmp")

        try:
            tmp_path.write_text(submission.model_dump_json(indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as e:
            raise StorageError("Could not save submission", submission.id, e) from e

        logger.debug("Saved submission %s to %s", submission.id, path)
