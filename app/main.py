"""
Ideas Tracker — FastAPI application entry-point.

Run with:
    uvicorn app.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import create_executor
from app.errors import ConflictViolation

# ── Import routers ──
from app.routers import ideas, votes

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: build the executor, create tables, dispose on shutdown ──
@asynccontextmanager
async def lifespan(app: FastAPI):
    executor = create_executor(settings.DATABASE_URL)
    await executor.create_schema()
    app.state.executor = executor
    logger.info(f"Database ready ({executor.backend})")
    try:
        yield
    finally:
        await executor.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Community idea board — submit proposals, vote, discuss.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(ConflictViolation)
async def conflict_handler(request: Request, exc: ConflictViolation):
    logger.warning(f"Constraint violation on {request.method} {request.url.path}: {exc.orig}")
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"success": False, "error": {"message": "Conflicting data", "code": "CONFLICT"}},
    )


# ── Register API routers ──
app.include_router(ideas.router)
app.include_router(votes.router)


@app.get("/api/health")
async def health(request: Request):
    return {"status": "ok", "database": request.app.state.executor.backend}
