"""
FastAPI app entrypoint.

Lifecycle email automations: cron endpoint, admin email API, optional in-process daily scheduler.
"""
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load .env from backend/ before any app code
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

from app.api.routes import admin_emails, cron
from app.config import settings
from app.core.constants import EMAIL_AUTOMATION_JOB_ID
from app.scheduler.email_automation_job import run_email_automations_job

logger = logging.getLogger(__name__)

# Scheduler: daily email automation run (UTC), only when EMAIL_SCHEDULER_ENABLED
_scheduler = BackgroundScheduler(timezone="UTC")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.email_scheduler_enabled:
        _scheduler.add_job(
            run_email_automations_job,
            "cron",
            hour=settings.automation_cron_hour,
            minute=settings.automation_cron_minute,
            id=EMAIL_AUTOMATION_JOB_ID,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        _scheduler.start()
        logger.info(
            "Email automations scheduled daily at %02d:%02d UTC",
            settings.automation_cron_hour,
            settings.automation_cron_minute,
        )
    app.state.scheduler = _scheduler
    yield
    if _scheduler.running:
        _scheduler.shutdown(wait=False)


app = FastAPI(title="Lifecycle Email Automations", version="0.1.0", lifespan=lifespan)

# CORS: dev origins + optional CORS_ORIGINS env (comma-separated) for the admin dashboard
_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_extra = os.getenv("CORS_ORIGINS", "")
if _cors_extra:
    _cors_origins.extend(o.strip() for o in _cors_extra.split(",") if o.strip())
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(cron.router, prefix="/cron", tags=["cron"])
app.include_router(admin_emails.router, prefix="/admin/emails", tags=["admin-emails"])


@app.get("/", include_in_schema=False)
def root():
    """Root: point to API docs and health."""
    return {"message": "Lifecycle Email Automations API", "docs": "/docs", "health": "/health"}


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
