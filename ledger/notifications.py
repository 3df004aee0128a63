import logging
from typing import Optional, Protocol


logger = logging.getLogger("kwh.notifications")


class Notifier(Protocol):
    def notify(self, actor_id: int, text: str, buttons: Optional[list] = None) -> None:
        ...


class NullNotifier:
    def notify(self, actor_id: int, text: str, buttons: Optional[list] = None) -> None:
        return None


def deliver(notifier: Notifier, actor_id: int, text: str, buttons: Optional[list] = None) -> bool:
    """Best-effort delivery: a failed notification never undoes the ledger write."""
    try:
        notifier.notify(actor_id, text, buttons)
        return True
    except Exception:
        logger.warning(
            "notification_failed",
            exc_info=True,
            extra={"extra_fields": {"target_actor_id": actor_id}},
        )
        return False
