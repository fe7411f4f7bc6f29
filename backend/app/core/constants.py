"""
Centralized constants for the email automation engine and its scheduler.

Change caps, windows, and job IDs here instead of scattering literals across services and routes.
Per-deployment knobs (sender, pacing, cron time) live in app.config.
"""
# Scheduler job ID (must match the id used in main.py add_job)
EMAIL_AUTOMATION_JOB_ID = "email_automations"

# Hard ceilings on attempts per run (bounded work, bounded provider load)
MAX_SEND_PER_RUN = 200
MAX_ONE_OFF_PER_RUN = 500

# Global throttle and per-template dedup window: at most one lifecycle email per user per window
THROTTLE_HOURS = 48

# Auth provider admin listing page size; a short page ends pagination
USER_PAGE_SIZE = 1000

# Legacy one-off template; a successful send flips profiles.founding_followup_sent
FOUNDING_FOLLOWUP_TEMPLATE_SLUG = "founding-followup"

# A running automation_runs row older than this is treated as abandoned (process died)
STALE_RUN_MINUTES = 15

# Wall-clock budgets per caller (seconds); executor stops cooperatively when exceeded
CRON_RUN_TIME_BUDGET_SECONDS = 60
ADMIN_RUN_TIME_BUDGET_SECONDS = 60
ONE_OFF_RUN_TIME_BUDGET_SECONDS = 300

# Cron bearer tokens shorter than this never authorize
MIN_CRON_TOKEN_LENGTH = 16

# Admin send log listing
EMAIL_LOG_DEFAULT_LIMIT = 100
EMAIL_LOG_MAX_LIMIT = 500

# Recipients preview sample size
RECIPIENTS_SAMPLE_SIZE = 5
