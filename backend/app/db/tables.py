"""
Single source of truth for database tables that exist after migrations (001).

Use these names when writing raw SQL. alembic/env.py asserts the registered models match.
"""
# All tables that exist in the DB. Must match models and migration 001.
ALL_TABLE_NAMES = (
    "profiles",
    "saved_items",
    "itineraries",
    "email_templates",
    "email_automations",
    "email_logs",
    "automation_runs",
)

