"""Errors raised by the grading services.

Each error carries the HTTP status the API layer answers with, so routers can
let them propagate and ``main.py`` renders them in one place.
"""

from typing import Optional


class GradingError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(GradingError):
    """Referenced exam, question, response or student does not exist."""

    status_code = 404


class UnauthorizedError(GradingError):
    """Caller does not own the exam being graded or published."""

    status_code = 403


class InvalidStateError(GradingError):
    """Operation attempted outside its allowed window."""

    status_code = 409


class ValidationError(GradingError):
    """Marks, percentages or batch items are out of range or missing."""

    status_code = 400


class PendingGradingError(InvalidStateError):
    """Publication refused because some responses have no active grade."""

    def __init__(self, pending: int, total: int):
        super().__init__(
            f"Cannot publish exam. {pending} out of {total} responses are still pending grading"
        )
        self.pending = pending
        self.total = total


def not_found(kind: str, ident: Optional[int] = None) -> NotFoundError:
    if ident is None:
        return NotFoundError(f"{kind} not found")
    return NotFoundError(f"{kind} {ident} not found")
