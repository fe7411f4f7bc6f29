"""Append-only send log: one row per attempt (sent or failed). Never updated.

Source of truth for throttling (any email in window), per-template dedup, and the admin log.
automation_id is NULL for one-off sends.
"""
from sqlalchemy import Column, DateTime, Index, Integer, String

from app.db.base import Base


class EmailLog(Base):
    __tablename__ = "email_logs"
    __table_args__ = (
        Index("ix_email_logs_template_sent_at", "template_slug", "sent_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    recipient_email = Column(String(320), nullable=True)
    template_slug = Column(String(128), nullable=False)
    automation_id = Column(Integer, nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(16), nullable=False)  # 'sent' | 'failed'
    provider_message_id = Column(String(128), nullable=True)
