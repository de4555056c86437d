# coursepay/tasks/verify_payments.py
"""
Pending payment sweep.

Safety net for purchases whose webhook never arrived (network issues, payer
closed the browser). Webhooks stay the primary path; this only looks at
purchases old enough that the webhook should have landed, and young enough
that they are not presumed abandoned.
"""
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict

from coursepay.celery_worker import celery_app
from coursepay.data.database import SessionLocal
from coursepay.services.lock_service import LockService
from coursepay.services.paymob_client import PaymobClient
from coursepay.services.purchase_service import (
    OUTCOME_ALREADY_PROCESSED,
    OUTCOME_COMPLETED,
    OUTCOME_FAILED,
    PurchaseService,
)
from coursepay.utils import settings
from coursepay.utils.logging import get_logger

logger = get_logger(__name__)

JOB_LOCK_NAME = "pending-payment-verification"
JOB_SOURCE = "pending_payment_job"


class PendingPaymentVerifier:
    def __init__(
        self,
        service: PurchaseService,
        min_age_seconds: int = settings.PENDING_MIN_AGE_SECONDS,
        max_age_seconds: int = settings.PENDING_MAX_AGE_SECONDS,
        batch_size: int = settings.PENDING_BATCH_SIZE,
        query_delay_seconds: float = settings.PENDING_QUERY_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.service = service
        self.min_age = timedelta(seconds=min_age_seconds)
        self.max_age = timedelta(seconds=max_age_seconds)
        self.batch_size = batch_size
        self.query_delay_seconds = query_delay_seconds
        self.sleep = sleep

    def run(self, now: datetime | None = None) -> Dict[str, int]:
        now = now or datetime.now(timezone.utc)
        oldest = now - self.max_age
        newest = now - self.min_age

        candidates = self.service.repo.find_pending_between(oldest, newest, self.batch_size)
        summary = {"processed": 0, "completed": 0, "failed": 0, "pending": 0, "errors": 0}

        if not candidates:
            logger.info("No pending payments to verify")
            return summary

        logger.info(f"Checking {len(candidates)} pending payments created between {oldest} and {newest}")

        for index, purchase in enumerate(candidates):
            summary["processed"] += 1
            if index:
                self.sleep(self.query_delay_seconds)

            try:
                logger.info(
                    f"Checking order {purchase.order_number} "
                    f"(merchant order {purchase.payment_intent_id}, paymob order {purchase.paymob_order_id or 'N/A'})"
                )
                result = self.service.verify_with_gateway(purchase, JOB_SOURCE)
            except Exception as e:
                # one bad record must not stop the sweep
                self.service.db.rollback()
                logger.error(f"Error checking {purchase.order_number}: {e}")
                summary["errors"] += 1
                continue

            outcome = result["outcome"]
            if outcome == OUTCOME_COMPLETED:
                summary["completed"] += 1
            elif outcome == OUTCOME_FAILED:
                summary["failed"] += 1
            elif outcome != OUTCOME_ALREADY_PROCESSED:
                summary["pending"] += 1

        logger.info(
            f"Pending payment sweep done: processed={summary['processed']} completed={summary['completed']} "
            f"failed={summary['failed']} pending={summary['pending']} errors={summary['errors']}"
        )
        return summary


def check_pending_payments(
    service: PurchaseService,
    lock_service: LockService,
    **options,
) -> Dict[str, int] | None:
    """
    One sweep, guarded by a lock: if a sweep is already running the call is
    skipped, not queued. Returns None when skipped.
    """
    owner = uuid.uuid4().hex
    ttl = settings.PENDING_CHECK_INTERVAL_SECONDS * 2

    if not lock_service.acquire(JOB_LOCK_NAME, owner, ttl):
        logger.info("Pending payment sweep already running, skipping")
        return None

    try:
        return PendingPaymentVerifier(service, **options).run()
    finally:
        lock_service.release(JOB_LOCK_NAME, owner)


def trigger_manual_check(
    db=None,
    lock_service: LockService | None = None,
    gateway: PaymobClient | None = None,
) -> Dict[str, int] | None:
    """Run a sweep right now (admin endpoint, tests)."""
    logger.info("Manual pending payment check triggered")
    own_session = db is None
    db = db or SessionLocal()
    try:
        return check_pending_payments(PurchaseService(db, gateway=gateway), lock_service or LockService())
    finally:
        if own_session:
            db.close()


@celery_app.task(name="coursepay.tasks.verify_payments.verify_pending_payments_task")
def verify_pending_payments_task():
    logger.info("Pending payment verification task started")
    return trigger_manual_check()
