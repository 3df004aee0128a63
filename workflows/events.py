from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class EventKind(str, Enum):
    TEXT = "text"
    PHOTO = "photo"
    BUTTON_PRESS = "button_press"


@dataclass
class ActorEvent:
    actor_id: int
    kind: EventKind
    payload: str = ""
    first_name: str = ""
    last_name: str = ""
    username: str = ""

    @property
    def text(self) -> str:
        return self.payload.strip() if self.kind == EventKind.TEXT else ""

    @property
    def is_command(self) -> bool:
        return self.kind == EventKind.TEXT and self.text.startswith("/")


@dataclass
class Button:
    label: str
    action: str

    def to_dict(self) -> dict:
        return {"label": self.label, "action": self.action}


@dataclass
class Reply:
    text: str
    buttons: list[list[Button]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "buttons": [[button.to_dict() for button in row] for row in self.buttons],
        }


@dataclass
class Action:
    """A button payload of the form ``<kind>:<name>[:<arg>]``."""

    kind: str
    name: str
    arg: Optional[str] = None

    @classmethod
    def parse(cls, raw: str) -> Optional["Action"]:
        parts = raw.strip().split(":", 2)
        if len(parts) < 2 or not parts[0] or not parts[1]:
            return None
        return cls(kind=parts[0], name=parts[1], arg=parts[2] if len(parts) == 3 else None)

    def encode(self) -> str:
        return f"{self.kind}:{self.name}" + (f":{self.arg}" if self.arg is not None else "")


def action(kind: Any, name: str, arg: Any = None) -> str:
    kind_value = getattr(kind, "value", kind)
    return Action(kind=kind_value, name=name, arg=None if arg is None else str(arg)).encode()
