from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class WorkflowKind(str, Enum):
    REGISTRATION = "registration"
    USAGE_REGISTRATION = "usage"
    RECHARGE = "recharge"
    INVITE_CODE = "invite"
    LOW_BALANCE_SEARCH = "low_balance"
    RECHARGE_HISTORY = "recharge_history"
    USAGE_HISTORY = "usage_history"


# Free-text input goes to the first kind in this order with a live slot.
PRIORITY: tuple[WorkflowKind, ...] = (
    WorkflowKind.REGISTRATION,
    WorkflowKind.USAGE_REGISTRATION,
    WorkflowKind.RECHARGE,
    WorkflowKind.INVITE_CODE,
    WorkflowKind.LOW_BALANCE_SEARCH,
    WorkflowKind.RECHARGE_HISTORY,
    WorkflowKind.USAGE_HISTORY,
)


class Step(str, Enum):
    WAITING_FOR_INVITE_CODE = "waiting_for_invite_code"
    WAITING_FOR_CARD_ID = "waiting_for_card_id"
    WAITING_FOR_AMOUNT = "waiting_for_amount"
    WAITING_FOR_PHOTO = "waiting_for_photo"
    WAITING_FOR_NOTES = "waiting_for_notes"
    WAITING_FOR_CONFIRMATION = "waiting_for_confirmation"
    WAITING_FOR_THRESHOLD = "waiting_for_threshold"
    WAITING_FOR_PERIOD = "waiting_for_period"
    BROWSING = "browsing"


STEPS: dict[WorkflowKind, frozenset[Step]] = {
    WorkflowKind.REGISTRATION: frozenset({Step.WAITING_FOR_INVITE_CODE, Step.WAITING_FOR_CARD_ID}),
    WorkflowKind.USAGE_REGISTRATION: frozenset({
        Step.WAITING_FOR_AMOUNT, Step.WAITING_FOR_PHOTO, Step.WAITING_FOR_NOTES,
    }),
    WorkflowKind.RECHARGE: frozenset({Step.WAITING_FOR_AMOUNT, Step.WAITING_FOR_CONFIRMATION}),
    WorkflowKind.INVITE_CODE: frozenset({Step.WAITING_FOR_NOTES}),
    WorkflowKind.LOW_BALANCE_SEARCH: frozenset({Step.WAITING_FOR_THRESHOLD, Step.BROWSING}),
    WorkflowKind.RECHARGE_HISTORY: frozenset({Step.WAITING_FOR_PERIOD, Step.BROWSING}),
    WorkflowKind.USAGE_HISTORY: frozenset({Step.WAITING_FOR_PERIOD, Step.BROWSING}),
}


class InvalidStepError(ValueError):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class WorkflowSlot:
    actor_id: int
    kind: WorkflowKind
    step: Step
    payload: dict[str, Any] = field(default_factory=dict)
    last_activity_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        self._check(self.step)

    def _check(self, step: Step) -> None:
        if step not in STEPS[self.kind]:
            raise InvalidStepError(f"{step.value} is not a step of the {self.kind.value} workflow")

    def advance(self, step: Step, **payload: Any) -> "WorkflowSlot":
        self._check(step)
        self.step = step
        self.payload.update(payload)
        return self

    def is_idle(self, now: datetime, idle_seconds: float) -> bool:
        return (now - self.last_activity_at).total_seconds() > idle_seconds

    def to_dict(self) -> dict:
        return {
            "actor_id": self.actor_id,
            "kind": self.kind.value,
            "step": self.step.value,
            "last_activity_at": self.last_activity_at.isoformat(),
        }
