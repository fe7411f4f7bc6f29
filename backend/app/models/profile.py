"""App-level profile row, keyed by the auth user id.

email_verified_at: fallback confirmation timestamp when the auth provider has none.
marketing_opt_in: hard gate for every lifecycle email.
"""
from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.sql import false, func

from app.db.base import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)  # auth user id
    founding_followup_sent = Column(Boolean, nullable=False, default=False, server_default=false())
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    marketing_opt_in = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
