"""
reminders.py

Daily reminder job.

Usage
-----
    python reminders.py              # one run, then exit (cron / task scheduler)
    python reminders.py --daemon     # stay up and run every day at REMINDER_TIME
    python reminders.py --date 2026-03-01   # one run as if today were that date

Each run sweeps overdue findings, then e-mails upcoming-audit notices,
7-day finding reminders and overdue alerts.  Running twice on the same day
sends nothing new.
"""

from __future__ import annotations

import argparse
import logging
import time
from dataclasses import asdict
from datetime import date
from typing import Optional

import schedule

from application import AbstractNotifier, ReminderRunDTO, SendRemindersCommand, SendRemindersUseCase
from config import Config
from infrastructure import Database
from notifications import SmtpNotifier

logger = logging.getLogger("reminders")


def run_reminders(
    database: Database,
    config: Config,
    notifier: Optional[AbstractNotifier] = None,
    today: Optional[date] = None,
) -> ReminderRunDTO:
    logger.info("Reminder run started")
    use_case = SendRemindersUseCase(notifier or SmtpNotifier(config))
    result = use_case.execute(
        SendRemindersCommand(admin_email=config.ADMIN_EMAIL, today=today),
        database.unit_of_work(),
    )
    logger.info("Reminder run finished: %s", asdict(result))
    return result


def _safe_run(database: Database, config: Config) -> None:
    # A failed run must not stop the scheduler loop
    try:
        run_reminders(database, config)
    except Exception:
        logger.exception("Reminder run failed")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Send audit and finding reminders.")
    parser.add_argument("--daemon", action="store_true", help="run daily at REMINDER_TIME")
    parser.add_argument("--date", type=date.fromisoformat, help="evaluate rules as of this date")
    args = parser.parse_args(argv)

    config = Config()
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    database = Database(config.DATABASE_URL, echo=config.SQL_ECHO)
    database.create_all()
    try:
        if not args.daemon:
            run_reminders(database, config, today=args.date)
            return 0

        schedule.every().day.at(config.REMINDER_TIME).do(_safe_run, database, config)
        logger.info("Reminder scheduler started; daily at %s", config.REMINDER_TIME)
        while True:
            schedule.run_pending()
            time.sleep(60)
    except KeyboardInterrupt:
        logger.info("Reminder scheduler stopped")
        return 0
    finally:
        database.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
