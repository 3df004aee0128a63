import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .registry import WorkflowRegistry


logger = logging.getLogger("kwh.reaper")

REAP_JOB_ID = "maintenance:reap_idle_slots"


class IdleReaper:
    def __init__(self, registry: WorkflowRegistry, interval_minutes: int = 60, test_mode: bool = False):
        self.registry = registry
        self.interval_minutes = interval_minutes
        self.test_mode = test_mode
        self.scheduler = BackgroundScheduler()
        self._started = False

    def reap_idle_slots(self, now: Optional[datetime] = None) -> int:
        """Evict every slot idle for longer than the registry's timeout."""
        now = now or self.registry.now()
        evicted = 0
        for slot in self.registry.slots():
            # Taking the actor lock waits out any dispatch still working on this slot.
            with self.registry.actor_lock(slot.actor_id):
                if not self.registry.evict_if_idle(slot.actor_id, slot.kind, now):
                    continue
            evicted += 1
            logger.info(
                "slot_evicted",
                extra={"extra_fields": {
                    "slot_actor_id": slot.actor_id,
                    "kind": slot.kind.value,
                    "step": slot.step.value,
                    "last_activity_at": slot.last_activity_at.isoformat(),
                }},
            )
        logger.info("reap_completed", extra={"extra_fields": {"evicted": evicted}})
        return evicted

    def start(self) -> None:
        if self.test_mode or self._started:
            return
        self.scheduler.add_job(
            self.reap_idle_slots,
            trigger="interval",
            id=REAP_JOB_ID,
            minutes=self.interval_minutes,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self.scheduler.start()
        self._started = True
        logger.info("reaper_started", extra={"extra_fields": {"interval_minutes": self.interval_minutes}})

    def shutdown(self) -> None:
        if self._started:
            self.scheduler.shutdown(wait=False)
            self._started = False
