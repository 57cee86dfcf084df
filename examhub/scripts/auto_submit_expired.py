"""Run the scheduled jobs once.

    python -m examhub.scripts.auto_submit_expired            # expiry sweep
    python -m examhub.scripts.auto_submit_expired --reminders  # also build reminders

Meant to be called by cron (or similar) every 1-5 minutes.
"""

import argparse
import logging

from sqlmodel import Session

from examhub.config import settings
from examhub.database import create_db_and_tables, engine
from examhub.services.expiry_service import auto_submit_expired_exams, prepare_exam_reminders

logger = logging.getLogger("examhub.scripts.auto_submit_expired")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Auto-submit expired exam attempts")
    parser.add_argument(
        "--reminders",
        action="store_true",
        help="also prepare reminders for exams starting within 24 hours",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    create_db_and_tables()

    summary = auto_submit_expired_exams(engine)
    logger.info(
        "Auto-submit finished: %(processed)s processed, %(success)s ok, %(errors)s failed",
        summary,
    )

    if args.reminders:
        with Session(engine) as session:
            reminders = prepare_exam_reminders(session)
        for reminder in reminders:
            logger.info("%s (student %s)", reminder["message"], reminder["student_email"])

    return 1 if summary["errors"] else 0


if __name__ == "__main__":
    raise SystemExit(main())
