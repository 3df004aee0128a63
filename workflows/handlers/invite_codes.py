from ledger.errors import StateError

from ..events import ActorEvent, Reply
from ..slots import Step, WorkflowKind, WorkflowSlot
from .base import WorkflowHandler, require_text


NOTES_PROMPT = "Add notes for this invite code (who it is for), or type 'none':"


class InviteCodeHandler(WorkflowHandler):
    kind = WorkflowKind.INVITE_CODE

    def start(self, event: ActorEvent, args: str) -> Reply:
        if not self.ctx.settings.invite_code_enabled:
            raise StateError("Invite codes are disabled", prompt="Invite codes are disabled.")
        code = self.ctx.directory.generate_invite_code()
        self.registry.start_workflow(event.actor_id, self.kind, Step.WAITING_FOR_NOTES, code=code)
        return Reply(f"New invite code: {code}. {NOTES_PROMPT}")

    def handle_input(self, slot: WorkflowSlot, event: ActorEvent) -> Reply:
        notes = require_text(event, NOTES_PROMPT)
        if notes.lower() == "none":
            notes = ""
        invite = self.ctx.directory.issue_invite(slot.payload["code"], event.actor_id, notes)
        return self.finish(slot, Reply(
            f"Invite code {invite.code} created. "
            f"It expires on {invite.expires_at:%d/%m/%Y %H:%M} UTC and can be used once."
        ))
