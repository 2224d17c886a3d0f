"""Utility functions for sanitization, validation and timestamps."""

from datetime import datetime, timezone
from typing import Optional

import bleach


def utcnow() -> datetime:
    """Current time as an aware UTC datetime; every timestamp column stores UTC."""
    return datetime.now(timezone.utc)


def sanitize_text(text: Optional[str]) -> Optional[str]:
    """Strip all HTML from grader feedback, comments, reasons and notes.

    Returns None for None so optional fields stay optional; an input that is
    empty after stripping becomes None as well.
    """
    if text is None:
        return None
    sanitized = bleach.clean(text, tags=[], strip=True).strip()
    return sanitized or None


def validate_marks(marks: float, max_marks: float) -> bool:
    """Validate that marks are within [0, max_marks].

    Raises:
        ValueError: If marks fall outside the range
    """
    if marks < 0 or marks > max_marks:
        raise ValueError(f"Marks {marks} out of range [0, {max_marks}]")

    return True


def validate_percentage(value: float) -> bool:
    """Validate a passing percentage is within [0, 100]."""
    if value < 0 or value > 100:
        raise ValueError("Passing percentage must be between 0 and 100")
    return True


def percentage_of(obtained: float, possible: float) -> float:
    """Percentage rounded to 2 places; 0 when nothing is possible."""
    if possible <= 0:
        return 0.0
    return round(obtained / possible * 100, 2)
