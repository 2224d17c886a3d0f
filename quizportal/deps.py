"""Shared FastAPI dependencies: database session, caller identity and exam ownership."""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from sqlmodel import Session

from quizportal.database import get_session
from quizportal.models import Exam, User

logger = logging.getLogger(__name__)

TEACHER_ROLES = ("teacher", "admin")
STUDENT_ROLES = ("student",)


def get_current_user(
    request: Request, session: Session = Depends(get_session)
) -> Optional[User]:
    """Return the user whose id the signed session cookie carries, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Deactivated or deleted since the cookie was issued
        request.session.clear()
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    if current_user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return current_user


def require_role(*roles: str):
    """Dependency factory that admits only users holding one of ``roles``."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in roles:
            logger.warning("User %d with role %s denied; needs one of %s", current_user.id, current_user.role, roles)
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return current_user

    return wrapper


require_teacher = require_role(*TEACHER_ROLES)
require_student = require_role(*STUDENT_ROLES)


def require_exam_owner(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_teacher),
) -> User:
    """Admit a teacher to an exam-scoped route only if they created that exam.

    Admins pass the role check but still need to own the exam, the same rule
    the grading services apply.
    """
    exam = session.get(Exam, exam_id)
    if exam is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Exam {exam_id} not found")
    if exam.created_by != current_user.id:
        logger.warning("Teacher %d denied access to exam %d they don't own", current_user.id, exam_id)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You can only manage your own exams")
    return current_user
