from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from common.config import Settings
from ledger.accounts import AccountDirectory
from ledger.approvals import ApprovalCoordinator
from ledger.errors import AccountNotFoundError, StateError, ValidationError
from ledger.notifications import deliver
from ledger.service import LedgerService

from ..events import Action, ActorEvent, Button, EventKind, Reply, action
from ..messaging import Messenger
from ..registry import WorkflowRegistry
from ..slots import WorkflowKind, WorkflowSlot


@dataclass
class WorkflowContext:
    registry: WorkflowRegistry
    ledger: LedgerService
    approvals: ApprovalCoordinator
    directory: AccountDirectory
    messenger: Messenger
    settings: Settings


class WorkflowHandler:
    """One multi-step interaction. Subclasses set ``kind`` and override the hooks they use."""

    kind: WorkflowKind

    def __init__(self, ctx: WorkflowContext):
        self.ctx = ctx

    @property
    def registry(self) -> WorkflowRegistry:
        return self.ctx.registry

    def start(self, event: ActorEvent, args: str) -> Reply:
        raise NotImplementedError

    def handle_input(self, slot: WorkflowSlot, event: ActorEvent) -> Reply:
        raise NotImplementedError

    def handle_action(self, event: ActorEvent, action: Action) -> Reply:
        raise StateError(f"Unknown action {action.encode()!r}", prompt="This button is no longer valid.")

    def finish(self, slot: WorkflowSlot, reply: Reply) -> Reply:
        self.registry.discard(slot.actor_id, slot.kind)
        return reply

    def notify_admins(self, text: str, buttons: Optional[list[list[Button]]] = None) -> int:
        targets = self.ctx.settings.notification_targets or self.ctx.directory.admin_ids()
        return sum(deliver(self.ctx.messenger, target, text, buttons) for target in targets)

    def display_name(self, actor_id: int) -> str:
        actor = self.ctx.directory.get_actor(actor_id)
        return actor.display_name if actor else str(actor_id)

    def account_holder(self, account_id: UUID) -> str:
        try:
            account = self.ctx.ledger.get_account(account_id)
        except AccountNotFoundError:
            return "deleted account"
        return self.display_name(account.actor_id)


def require_text(event: ActorEvent, prompt: str) -> str:
    if event.kind != EventKind.TEXT or not event.text:
        raise ValidationError(f"Expected text from {event.actor_id}, got {event.kind.value}", prompt=prompt)
    return event.text


def parse_entry_id(action: Action) -> UUID:
    try:
        return UUID(action.arg or "")
    except ValueError:
        raise StateError(f"Malformed entry id in {action.encode()!r}", prompt="Invalid transaction.")


def page_count(total: int, size: int) -> int:
    return max(1, -(-total // size))


def page_of(items: list, page: int, size: int) -> list:
    if page < 1 or page > page_count(len(items), size):
        raise StateError(f"Page {page} out of range", prompt="This page is no longer available.")
    return items[(page - 1) * size:page * size]


def page_buttons(kind: WorkflowKind, page: int, pages: int) -> list[list[Button]]:
    nav = []
    if page > 1:
        nav.append(Button("Previous", action(kind, "page", page - 1)))
    if page < pages:
        nav.append(Button("Next", action(kind, "page", page + 1)))
    rows = [nav] if nav else []
    rows.append([Button("Close", action(kind, "close"))])
    return rows


def parse_page(action: Action) -> int:
    try:
        return int(action.arg or "")
    except ValueError:
        raise StateError(f"Malformed page in {action.encode()!r}", prompt="This page is no longer available.")


def parse_actor_id(raw: Optional[str], usage: str) -> int:
    try:
        return int((raw or "").strip())
    except ValueError:
        raise ValidationError(f"Malformed actor id {raw!r}", prompt=usage)
