"""Automation rule: who gets which template (trigger + conditions + delay).

trigger_type: user_confirmed | user_inactive | place_added | itinerary_created | manual.
conditions: structured AutomationConditions (see app.services.email.types); {} = no filter.
Manual rules only run via an explicit single-rule request, never from cron.
"""
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.sql import false, func

from app.db.base import Base, JSONType


class EmailAutomation(Base):
    __tablename__ = "email_automations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(256), nullable=False)
    template_slug = Column(String(128), ForeignKey("email_templates.slug"), nullable=False, index=True)
    trigger_type = Column(String(32), nullable=False)
    conditions = Column(JSONType, nullable=False, default=dict)
    delay_hours = Column(Integer, nullable=False, default=0, server_default="0")
    is_active = Column(Boolean, nullable=False, default=False, server_default=false())
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
