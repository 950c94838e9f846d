"""Typing therapy session engine – FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import async_session, init_db
from app.seed import seed_default_users
from app.services.analysis_sweep import sweep_pending_analyses
from app.services.errors import SessionEngineError

# --- Configure logging so app.* loggers are visible alongside uvicorn ---
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:    %(name)s - %(message)s",
    stream=sys.stdout,
    force=True,  # override uvicorn's config
)

log = logging.getLogger(__name__)

# --- APScheduler for the nightly analysis sweep ---
scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # --- startup ---
    await init_db()
    async with async_session() as db:
        await seed_default_users(db)

    scheduler.add_job(
        sweep_pending_analyses,
        trigger=CronTrigger(hour=settings.analysis_sweep_hour_utc, minute=0, timezone="UTC"),
        id="analysis_sweep",
        name="Cache typing reports for sessions missing one",
        replace_existing=True,
    )
    scheduler.start()
    log.info(
        "Scheduler started – analysis sweep scheduled for %02d:00 UTC",
        settings.analysis_sweep_hour_utc,
    )

    yield

    # --- shutdown ---
    scheduler.shutdown(wait=False)
    log.info("Scheduler shut down")


app = FastAPI(title="Typing Therapy Session Engine", version="0.1.0", lifespan=lifespan)


@app.exception_handler(SessionEngineError)
async def session_engine_error(request: Request, exc: SessionEngineError):
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.payload(), status_code=exc.status_code)


@app.get("/api/test")
async def health():
    return {"message": "Server is running!"}


# --- Register routers ---
from app.routes.sessions import router as sessions_router  # noqa: E402
from app.routes.typing import router as typing_router  # noqa: E402

app.include_router(sessions_router, prefix="/api")
app.include_router(typing_router, prefix="/api")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
