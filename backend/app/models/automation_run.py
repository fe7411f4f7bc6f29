"""One row per automation run, for the admin dashboard.

Opened with status=running, closed with finished_at + counters + success|failure.
At most one running row (partial unique index); stale ones are reclaimed on the next open.
"""
from sqlalchemy import Column, DateTime, Index, Integer, String, text

from app.db.base import Base, JSONType


class AutomationRun(Base):
    __tablename__ = "automation_runs"
    __table_args__ = (
        Index(
            "uq_automation_runs_single_running",
            "status",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    trigger = Column(String(16), nullable=False, default="cron")  # cron | scheduler | admin | single | one_off
    started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    sent = Column(Integer, nullable=False, default=0)
    skipped = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    status = Column(String(16), nullable=False, default="running")  # running | success | failure
    errors = Column(JSONType, nullable=False, default=list)
