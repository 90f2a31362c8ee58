"""
Webhook Sweep Scheduler — periodic redelivery of due webhook events.

Runs in a BackgroundScheduler thread alongside the API. Requests also
trigger `deliver_due_webhooks` as a FastAPI background task so the first
attempt goes out right after the response.
"""
import logging
from typing import Callable, Optional

import httpx
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from offramp.config import Settings, get_settings
from offramp.services.webhook_dispatcher import WebhookDispatcher
from offramp.storage import open_storage

logger = logging.getLogger(__name__)

SWEEP_JOB_ID = "webhook_sweep"


def deliver_due_webhooks(storage_factory: Callable = open_storage,
                         client: Optional[httpx.Client] = None) -> Optional[dict]:
    """Deliver every due event using a storage handle of its own."""
    try:
        with storage_factory() as storage:
            return WebhookDispatcher(storage, client=client).process_due()
    except Exception:
        # Events stay due and are picked up by the next sweep
        logger.exception("[WEBHOOK] Sweep failed")
        return None


class WebhookSweepScheduler:
    def __init__(self, settings: Optional[Settings] = None, storage_factory: Callable = open_storage):
        self.settings = settings or get_settings()
        self.storage_factory = storage_factory
        self.scheduler = BackgroundScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
            timezone="UTC",
        )

    def start(self) -> None:
        if not self.settings.WEBHOOK_SWEEP_ENABLED or self.scheduler.running:
            return
        self.scheduler.add_job(
            deliver_due_webhooks,
            trigger=IntervalTrigger(seconds=self.settings.WEBHOOK_SWEEP_INTERVAL_SECONDS),
            kwargs={"storage_factory": self.storage_factory},
            id=SWEEP_JOB_ID,
            name="Webhook Sweep",
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info("[SCHEDULER] Webhook sweep every %ss", self.settings.WEBHOOK_SWEEP_INTERVAL_SECONDS)

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("[SCHEDULER] Stopped")
