"""
Expiry sweeper.

Periodically demotes `available` donations whose expiry has passed to
`expired`. Only `available` records are touched; a claimed donation keeps
its claim even after the nominal expiry.
"""

from __future__ import annotations

import logging
from datetime import datetime

from src.models.donation import DonationStatus
from src.services.donation_store import DonationFilter, DonationStore
from src.utils.audit_log import log_audit
from src.utils.clock import SystemClock

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_MINUTES = 5
JOB_ID = "donation-expiry-sweep"


class ExpirySweeper:
    def __init__(self, store: DonationStore, clock=None, interval_minutes: float = DEFAULT_INTERVAL_MINUTES):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive")
        self.store = store
        self.clock = clock or SystemClock()
        self.interval_minutes = interval_minutes

    def sweep(self, now: datetime | None = None) -> int:
        """Expire every available donation with expiry_date_time < now.

        Storage errors propagate; `run` is the entry point that swallows them.
        """
        now = now or self.clock.now()
        criteria = DonationFilter.of([DonationStatus.AVAILABLE], expires_before=now)
        return self.store.bulk_conditional_update(
            criteria,
            {"status": DonationStatus.EXPIRED, "updated_at": now},
        )

    def run(self) -> int:
        """Scheduled tick. Never raises."""
        now = self.clock.now()
        logger.info("🕒 Running scheduled expiry check at %s", now.isoformat())
        try:
            expired = self.sweep(now)
        except Exception:
            logger.exception("❌ Error during scheduled expiry check; retrying next tick")
            return 0

        if expired:
            logger.info("Marked %s donation(s) as EXPIRED.", expired)
            log_audit(
                "donations_expired_auto",
                user_role="system",
                entity_type="donation",
                metadata={"expired_count": expired, "swept_at": now.isoformat()},
            )
        else:
            logger.info("No available donations have expired.")
        return expired

    def schedule(self, scheduler):
        """Register `run` on an APScheduler scheduler."""
        return scheduler.add_job(
            self.run,
            "interval",
            minutes=self.interval_minutes,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
