from ledger.accounts import sanitize_card_id
from ledger.errors import StateError, ValidationError
from ledger.models import AccountStatus
from ledger.notifications import deliver

from ..events import Action, ActorEvent, Button, Reply, action
from ..slots import Step, WorkflowKind, WorkflowSlot
from .base import WorkflowHandler, parse_actor_id, require_text


INVITE_PROMPT = "Please enter your invite code:"
CARD_PROMPT = "Please enter your card number (at least 3 characters):"

ALREADY_REGISTERED = {
    AccountStatus.ACTIVE: "You are already registered. Use /help to see the available commands.",
    AccountStatus.PENDING: "Your registration is waiting for administrator approval.",
    AccountStatus.BLOCKED: "Your account is blocked. Please contact an administrator.",
    AccountStatus.DISABLED: "Your account is disabled. Please contact an administrator.",
}


class RegistrationHandler(WorkflowHandler):
    kind = WorkflowKind.REGISTRATION

    def start(self, event: ActorEvent, args: str) -> Reply:
        account = self.ctx.directory.get_account_by_actor(event.actor_id)
        if account is not None:
            return Reply(ALREADY_REGISTERED[account.status])

        if self.ctx.settings.invite_code_enabled:
            self.registry.start_workflow(event.actor_id, self.kind, Step.WAITING_FOR_INVITE_CODE)
            return Reply(f"Welcome! Registration requires an invite code. {INVITE_PROMPT}")

        self.registry.start_workflow(event.actor_id, self.kind, Step.WAITING_FOR_CARD_ID)
        return Reply(f"Welcome! {CARD_PROMPT}")

    def handle_input(self, slot: WorkflowSlot, event: ActorEvent) -> Reply:
        if slot.step == Step.WAITING_FOR_INVITE_CODE:
            invite = self.ctx.directory.validate_invite(require_text(event, INVITE_PROMPT))
            slot.advance(Step.WAITING_FOR_CARD_ID, invite_code=invite.code)
            return Reply(f"Invite code accepted. {CARD_PROMPT}")

        card_id = sanitize_card_id(require_text(event, CARD_PROMPT))
        if not card_id:
            raise ValidationError(f"Malformed card id from {event.actor_id}", prompt=f"Invalid card format. {CARD_PROMPT}")

        invite_code = slot.payload.get("invite_code")
        if invite_code:
            # The code may have been consumed by someone else since it was accepted.
            try:
                self.ctx.directory.validate_invite(invite_code)
            except ValidationError:
                slot.advance(Step.WAITING_FOR_INVITE_CODE, invite_code=None)
                raise

        account = self.ctx.directory.register(
            event.actor_id,
            card_id,
            first_name=event.first_name,
            last_name=event.last_name,
            username=event.username,
            invite_code=invite_code,
        )
        name = self.display_name(event.actor_id)
        self.notify_admins(
            f"New registration request from {name} (id {event.actor_id}), card {account.card_id}"
            + (f", invite code {invite_code}." if invite_code else "."),
            [[
                Button("Approve", action(self.kind, "approve", event.actor_id)),
                Button("Reject", action(self.kind, "reject", event.actor_id)),
            ]],
        )
        return self.finish(slot, Reply("Registration submitted. Your account is waiting for administrator approval."))

    def handle_action(self, event: ActorEvent, act: Action) -> Reply:
        self.ctx.directory.require_admin(event.actor_id)
        target = parse_actor_id(act.arg, "Invalid user id.")

        if act.name == "approve":
            self.ctx.directory.transition_status(target, AccountStatus.ACTIVE, expected=AccountStatus.PENDING)
            deliver(self.ctx.messenger, target, "Your registration was approved. Use /help to get started.")
            return Reply(f"Registration of {self.display_name(target)} approved.")
        if act.name == "reject":
            self.ctx.directory.transition_status(target, AccountStatus.BLOCKED, expected=AccountStatus.PENDING)
            deliver(self.ctx.messenger, target, "Your registration was rejected. Please contact an administrator.")
            return Reply(f"Registration of {self.display_name(target)} rejected.")
        raise StateError(f"Unknown registration action {act.name!r}", prompt="This button is no longer valid.")
