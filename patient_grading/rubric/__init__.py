"""
Rubric Processing Module.

Provides rubric templates, JSON parsing and validation.
"""

from patient_grading.rubric.parser import RubricParseError, RubricParser
from patient_grading.rubric.templates import TEMPLATES, get_template
from patient_grading.rubric.validator import RubricValidationError, RubricValidator

__all__ = [
    "TEMPLATES",
    "RubricParseError",
    "RubricParser",
    "RubricValidationError",
    "RubricValidator",
    "get_template",
]
