import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from common.locks import KeyedLock
from ledger.errors import WorkflowExpiredError

from .slots import PRIORITY, Step, WorkflowKind, WorkflowSlot


logger = logging.getLogger("kwh.workflows")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowRegistry:
    """Live workflow slots, at most one per ``(actor_id, kind)``.

    Idle slots are dropped lazily on every lookup; :class:`IdleReaper` sweeps the
    rest. Callers that mutate a slot hold :meth:`actor_lock` for the actor.
    """

    def __init__(
        self,
        idle_timeout: timedelta = timedelta(minutes=30),
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.idle_timeout = idle_timeout
        self.clock = clock or utcnow
        self._slots: dict[tuple[int, WorkflowKind], WorkflowSlot] = {}
        self._guard = threading.Lock()
        self._actor_locks = KeyedLock()

    def now(self) -> datetime:
        return self.clock()

    def actor_lock(self, actor_id: int):
        return self._actor_locks.hold(actor_id)

    def _expired(self, slot: WorkflowSlot, now: datetime) -> bool:
        return slot.is_idle(now, self.idle_timeout.total_seconds())

    def start_workflow(self, actor_id: int, kind: WorkflowKind, step: Step, **payload: Any) -> WorkflowSlot:
        slot = WorkflowSlot(
            actor_id=actor_id,
            kind=kind,
            step=step,
            payload=dict(payload),
            last_activity_at=self.now(),
        )
        with self._guard:
            replaced = (actor_id, kind) in self._slots
            self._slots[(actor_id, kind)] = slot
        logger.info(
            "workflow_started",
            extra={"extra_fields": {"kind": kind.value, "step": step.value, "replaced": replaced}},
        )
        return slot

    def get(self, actor_id: int, kind: WorkflowKind) -> Optional[WorkflowSlot]:
        now = self.now()
        with self._guard:
            slot = self._slots.get((actor_id, kind))
            if slot is None:
                return None
            if not self._expired(slot, now):
                return slot
            del self._slots[(actor_id, kind)]
        logger.info("workflow_expired", extra={"extra_fields": {"kind": kind.value, "step": slot.step.value}})
        return None

    def require(self, actor_id: int, kind: WorkflowKind, step: Optional[Step] = None) -> WorkflowSlot:
        slot = self.get(actor_id, kind)
        if slot is None or (step is not None and slot.step != step):
            raise WorkflowExpiredError(
                f"No live {kind.value} workflow for actor {actor_id}",
                prompt="This action has expired. Please start again.",
            )
        return slot

    def touch(self, slot: WorkflowSlot) -> None:
        with self._guard:
            if self._slots.get((slot.actor_id, slot.kind)) is slot:
                slot.last_activity_at = self.now()

    def discard(self, actor_id: int, kind: WorkflowKind) -> bool:
        with self._guard:
            return self._slots.pop((actor_id, kind), None) is not None

    def cancel(self, actor_id: int) -> int:
        with self.actor_lock(actor_id), self._guard:
            keys = [key for key in self._slots if key[0] == actor_id]
            for key in keys:
                del self._slots[key]
        if keys:
            logger.info("workflows_cancelled", extra={"extra_fields": {"count": len(keys)}})
        return len(keys)

    def live_kinds(self, actor_id: int) -> list[WorkflowKind]:
        return [kind for kind in PRIORITY if self.get(actor_id, kind) is not None]

    def slots(self) -> list[WorkflowSlot]:
        with self._guard:
            return list(self._slots.values())

    def evict_if_idle(self, actor_id: int, kind: WorkflowKind, now: datetime) -> bool:
        with self._guard:
            slot = self._slots.get((actor_id, kind))
            if slot is None or not self._expired(slot, now):
                return False
            del self._slots[(actor_id, kind)]
            return True
