#!/usr/bin/env python3
"""
Run lifecycle email automations from the command line (same audited path as the cron endpoint).

Run from backend:
  python scripts/run_email_automations.py                 # all active non-manual automations
  python scripts/run_email_automations.py --automation-id 3
  python scripts/run_email_automations.py --dry-run       # candidate counts only, nothing sent
"""
import argparse
import logging
import sys
from pathlib import Path

backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from app.core.errors import RunInProgressError
from app.db.session import SessionLocal
from app.services.email.directory import get_user_directory
from app.services.email.mailer import get_mailer
from app.services.email.runner import preview_automations
from app.services.email_automation_service import TRIGGER_ADMIN, run_all_automations, run_one_automation


def main() -> int:
    parser = argparse.ArgumentParser(description="Run lifecycle email automations.")
    parser.add_argument("--automation-id", type=int, default=None, help="Run only this automation (any trigger type)")
    parser.add_argument("--dry-run", action="store_true", help="Report candidates per automation without sending")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
    db = SessionLocal()
    try:
        directory = get_user_directory()
        if args.dry_run:
            rows = preview_automations(db, directory, automation_id=args.automation_id)
            if not rows:
                print("No matching active automations.")
                return 0
            for r in rows:
                if "error" in r:
                    print(f"#{r['automation_id']} {r['name']} [{r['template_slug']}]: skipped ({r['error']})")
                    continue
                print(
                    f"#{r['automation_id']} {r['name']} [{r['template_slug']}]: "
                    f"candidates={r['candidates']} throttled={r['throttled']} would_send={r['would_send']}"
                )
            return 0

        mailer = get_mailer()
        try:
            if args.automation_id is not None:
                result = run_one_automation(db, args.automation_id, directory, mailer)
            else:
                result = run_all_automations(db, directory, mailer, trigger=TRIGGER_ADMIN)
        except RunInProgressError as e:
            print(f"Not started: {e}", file=sys.stderr)
            return 2
        print(
            f"Done. sent={result.sent} skipped={result.skipped} failed={result.failed} "
            f"limit_reached={result.limit_reached}"
        )
        for err in result.errors:
            print(f"  - {err}")
        return 1 if result.failed or result.aborted else 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
