from ledger.errors import InsufficientBalanceError, StateError, ValidationError
from ledger.service import parse_amount

from ..events import Action, ActorEvent, Button, EventKind, Reply, action
from ..slots import Step, WorkflowKind, WorkflowSlot
from .base import WorkflowHandler, parse_entry_id, require_text


PHOTO_PROMPT = "Please send a photo of the meter reading:"
NOTES_PROMPT = "Add notes for this usage, or type 'none':"


class UsageRegistrationHandler(WorkflowHandler):
    kind = WorkflowKind.USAGE_REGISTRATION

    def start(self, event: ActorEvent, args: str) -> Reply:
        account = self.ctx.directory.require_active_account(event.actor_id)
        self.registry.start_workflow(
            event.actor_id, self.kind, Step.WAITING_FOR_AMOUNT, account_id=account.id,
        )
        return Reply(
            f"Your current balance is {account.balance:.2f} kWh. "
            f"Enter the amount of kWh used (max {self.ctx.settings.max_amount}):"
        )

    def handle_input(self, slot: WorkflowSlot, event: ActorEvent) -> Reply:
        ceiling = self.ctx.settings.max_amount

        if slot.step == Step.WAITING_FOR_AMOUNT:
            raw = require_text(event, f"Please enter a valid positive amount (max {ceiling} kWh):")
            amount = parse_amount(raw, ceiling)
            self.ctx.ledger.check_usage(slot.payload["account_id"], amount)
            slot.advance(Step.WAITING_FOR_PHOTO, amount=amount)
            return Reply(f"Amount: {amount} kWh. {PHOTO_PROMPT}")

        if slot.step == Step.WAITING_FOR_PHOTO:
            if event.kind != EventKind.PHOTO or not event.payload:
                raise ValidationError(f"Expected a photo from {event.actor_id}", prompt=PHOTO_PROMPT)
            slot.advance(Step.WAITING_FOR_NOTES, photo_file_id=event.payload)
            return Reply(f"Photo received. {NOTES_PROMPT}")

        notes = require_text(event, NOTES_PROMPT)
        if notes.lower() == "none":
            notes = ""
        try:
            entry = self.ctx.ledger.request_usage(
                slot.payload["account_id"],
                slot.payload["amount"],
                event.actor_id,
                notes=notes,
                photo_file_id=slot.payload.get("photo_file_id"),
            )
        except InsufficientBalanceError:
            slot.advance(Step.WAITING_FOR_AMOUNT)
            raise

        self.notify_admins(
            f"Usage request from {self.display_name(event.actor_id)}: {entry.amount} kWh. "
            f"Balance {entry.previous_balance:.2f} -> {entry.new_balance:.2f} kWh."
            + (f" Notes: {entry.notes}" if entry.notes else ""),
            [[
                Button("Approve", action(self.kind, "approve", entry.id)),
                Button("Reject", action(self.kind, "reject", entry.id)),
            ]],
        )
        return self.finish(slot, Reply(
            f"Usage of {entry.amount} kWh registered and waiting for administrator approval."
        ))

    def handle_action(self, event: ActorEvent, act: Action) -> Reply:
        self.ctx.directory.require_admin(event.actor_id)
        entry_id = parse_entry_id(act)

        if act.name == "approve":
            entry = self.ctx.approvals.approve(entry_id, event.actor_id)
            return Reply(
                f"Usage of {entry.amount} kWh for {self.account_holder(entry.account_id)} approved. "
                f"New balance: {entry.new_balance:.2f} kWh."
            )
        if act.name == "reject":
            entry = self.ctx.approvals.reject(entry_id, event.actor_id)
            return Reply(f"Usage of {entry.amount} kWh for {self.account_holder(entry.account_id)} rejected.")
        raise StateError(f"Unknown usage action {act.name!r}", prompt="This button is no longer valid.")
