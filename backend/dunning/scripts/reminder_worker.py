from __future__ import annotations

import argparse
import logging
import time

from dunning.core.logging import configure_logging
from dunning.core.settings import settings
from dunning.db.session import session_scope
from dunning.services.email import EmailNotificationSender
from dunning.services.quota import PlanQuotaChecker
from dunning.services.reconciliation import run_reminder_reconciliation
from dunning.services.reminder_dispatch import ReminderDispatcher


logger = logging.getLogger("reminder_worker")


def build_dispatcher() -> ReminderDispatcher:
    return ReminderDispatcher(EmailNotificationSender(), PlanQuotaChecker())


def main() -> None:
    parser = argparse.ArgumentParser(description="Send due invoice reminders.")
    parser.add_argument("--once", action="store_true", help="Run once and exit.")
    parser.add_argument("--interval", type=int, default=3600, help="Seconds between reconciliation passes.")
    parser.add_argument("--limit", type=int, default=None, help="Max invoices per pass.")
    args = parser.parse_args()

    configure_logging(level=settings.log_level)
    dispatcher = build_dispatcher()

    while True:
        with session_scope() as db:
            summary = run_reminder_reconciliation(db, dispatcher, limit=args.limit)
        logger.info("Reminder pass complete: %s", summary.as_dict())
        if args.once:
            break
        time.sleep(args.interval)


if __name__ == "__main__":
    main()
