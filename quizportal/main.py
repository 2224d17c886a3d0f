"""FastAPI entrypoint for the quiz portal grading service."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from quizportal.config import settings
from quizportal.database import create_db_and_tables
from quizportal.errors import GradingError, PendingGradingError
from quizportal.routers import grading as grading_router_module
from quizportal.routers import responses as responses_router_module
from quizportal.routers import results as results_router_module

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Quiz Portal Grading & Results")


@app.exception_handler(PendingGradingError)
async def pending_grading_handler(request: Request, exc: PendingGradingError):
    """Publication refused: tell the teacher how much grading is left."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "pending": exc.pending, "total": exc.total},
    )


@app.exception_handler(GradingError)
async def grading_error_handler(request: Request, exc: GradingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.session_secret)

# Routers
app.include_router(responses_router_module.router, prefix="/exams", tags=["responses"])
app.include_router(grading_router_module.router, prefix="/teacher/grading", tags=["grading"])
app.include_router(results_router_module.router, prefix="/results", tags=["results"])


@app.get("/health")
def health():
    return {"status": "ok"}


@app.on_event("startup")
def on_startup():
    """Initialize database schema."""
    create_db_and_tables()
