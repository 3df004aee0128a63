import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Optional, Protocol

from .events import Button, Reply


class Messenger(Protocol):
    def reply(self, actor_id: int, reply: Reply) -> None:
        ...

    def notify(self, actor_id: int, text: str, buttons: Optional[list[list[Button]]] = None) -> None:
        ...

    def send_document(self, actor_id: int, filename: str, content: bytes, caption: str = "") -> None:
        ...

    def answer_button(self, actor_id: int, text: str) -> None:
        ...


@dataclass
class OutboundMessage:
    actor_id: int
    kind: str
    text: str
    buttons: list[list[Button]] = field(default_factory=list)
    filename: Optional[str] = None
    content: Optional[bytes] = None

    def to_dict(self) -> dict:
        return {
            "actor_id": self.actor_id,
            "kind": self.kind,
            "text": self.text,
            "buttons": [[button.to_dict() for button in row] for row in self.buttons],
            "filename": self.filename,
        }


class InMemoryMessenger:
    """Collects everything that would be sent.

    Inside ``capture()`` messages go only to the captured list of the current
    context, so concurrent HTTP requests each see just their own messages.
    Outside a capture they accumulate in ``outbox``.
    """

    def __init__(self):
        self.outbox: list[OutboundMessage] = []
        self._lock = threading.Lock()
        self._captured: ContextVar[Optional[list[OutboundMessage]]] = ContextVar(
            f"captured_{id(self)}", default=None
        )

    def _record(self, message: OutboundMessage) -> None:
        captured = self._captured.get()
        if captured is not None:
            captured.append(message)
            return
        with self._lock:
            self.outbox.append(message)

    @contextmanager
    def capture(self) -> Iterator[list[OutboundMessage]]:
        captured: list[OutboundMessage] = []
        token = self._captured.set(captured)
        try:
            yield captured
        finally:
            self._captured.reset(token)

    def reply(self, actor_id: int, reply: Reply) -> None:
        self._record(OutboundMessage(actor_id, "reply", reply.text, reply.buttons))

    def notify(self, actor_id: int, text: str, buttons: Optional[list[list[Button]]] = None) -> None:
        self._record(OutboundMessage(actor_id, "notification", text, buttons or []))

    def send_document(self, actor_id: int, filename: str, content: bytes, caption: str = "") -> None:
        self._record(OutboundMessage(actor_id, "document", caption, filename=filename, content=content))

    def answer_button(self, actor_id: int, text: str) -> None:
        self._record(OutboundMessage(actor_id, "button_answer", text))

    def sent_to(self, actor_id: int, kind: Optional[str] = None) -> list[OutboundMessage]:
        with self._lock:
            messages = list(self.outbox)
        return [m for m in messages if m.actor_id == actor_id and (kind is None or m.kind == kind)]

    def drain(self) -> list[OutboundMessage]:
        with self._lock:
            messages, self.outbox = self.outbox, []
        return messages
