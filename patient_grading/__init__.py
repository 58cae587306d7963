"""
Patient Actor Grading - multi-judge AI grading for simulated patient interviews.

This package grades medical students' conversations with AI-simulated
patient actors. Several independent LLM judges score the transcript against
a rubric; their scores are averaged and any category where the judges
disagree too much is flagged for instructor review.
"""

__version__ = "1.0.0"
__author__ = "Patient Actor Grading Team"
