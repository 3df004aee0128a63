import logging
from dataclasses import dataclass
from functools import partial
from typing import Callable
from uuid import uuid4

from common.logging import log_context, new_error_code
from ledger.errors import AccountStatusError, PersistenceError, StateError, ValidationError

from .events import Action, ActorEvent, EventKind, Reply
from .handlers import HANDLER_CLASSES, AccountCommands, WorkflowContext, WorkflowHandler
from .handlers.commands import STATUS_CHANGES
from .slots import WorkflowKind


logger = logging.getLogger("kwh.dispatcher")

UNRECOGNIZED = "Unrecognized command. Use /help to see the available commands."


@dataclass
class Command:
    run: Callable[[ActorEvent, str], Reply]
    admin_only: bool = False


class StepDispatcher:
    def __init__(self, ctx: WorkflowContext):
        self.ctx = ctx
        self.registry = ctx.registry
        self.handlers: dict[WorkflowKind, WorkflowHandler] = {cls.kind: cls(ctx) for cls in HANDLER_CLASSES}
        self.account_commands = AccountCommands(ctx)

        h = self.handlers
        acc = self.account_commands
        self.commands: dict[str, Command] = {
            "start": Command(h[WorkflowKind.REGISTRATION].start),
            "help": Command(acc.help),
            "cancel": Command(self._cancel),
            "balance": Command(acc.balance),
            "history": Command(acc.history),
            "profile": Command(acc.profile),
            "usage": Command(h[WorkflowKind.USAGE_REGISTRATION].start),
            "recharge": Command(h[WorkflowKind.RECHARGE].start, admin_only=True),
            "invite": Command(h[WorkflowKind.INVITE_CODE].start, admin_only=True),
            "invites": Command(acc.invites, admin_only=True),
            "low_balance": Command(h[WorkflowKind.LOW_BALANCE_SEARCH].start, admin_only=True),
            "recharges": Command(h[WorkflowKind.RECHARGE_HISTORY].start, admin_only=True),
            "usages": Command(h[WorkflowKind.USAGE_HISTORY].start, admin_only=True),
            "pending": Command(acc.pending, admin_only=True),
            "stats": Command(acc.stats, admin_only=True),
            "users": Command(acc.users, admin_only=True),
            "user": Command(acc.user, admin_only=True),
            "export_users": Command(acc.export_users, admin_only=True),
            "make_admin": Command(acc.make_admin, admin_only=True),
            "delete": Command(acc.delete, admin_only=True),
            "confirm_delete": Command(acc.confirm_delete, admin_only=True),
        }
        for name in STATUS_CHANGES:
            self.commands[name] = Command(partial(acc.change_status, name), admin_only=True)

    def dispatch(self, event: ActorEvent) -> Reply:
        """Run one event to completion and send the reply; every failure becomes a reply."""
        failed = True
        with log_context(correlation_id=uuid4().hex[:12], actor_id=event.actor_id):
            with self.registry.actor_lock(event.actor_id):
                try:
                    reply = self._route(event)
                    failed = False
                except ValidationError as e:
                    logger.info("step_rejected", extra={"extra_fields": {"reason": str(e)}})
                    reply = Reply(e.reply_text)
                except StateError as e:
                    logger.info("state_rejected", extra={"extra_fields": {"reason": str(e)}})
                    reply = Reply(e.reply_text)
                except AccountStatusError as e:
                    logger.info("status_rejected", extra={"extra_fields": {"reason": str(e)}})
                    reply = Reply(e.reply_text)
                except PersistenceError:
                    reply = self._apologize("persistence_failed")
                except Exception:
                    reply = self._apologize("dispatch_failed")

            if event.kind == EventKind.BUTTON_PRESS:
                self.ctx.messenger.answer_button(event.actor_id, reply.text if failed else "")
            self.ctx.messenger.reply(event.actor_id, reply)
        return reply

    def _apologize(self, event_name: str) -> Reply:
        code = new_error_code()
        logger.exception(event_name, extra={"extra_fields": {"error_code": code}})
        return Reply(f"Something went wrong. Please try again later (error code {code}).")

    def _route(self, event: ActorEvent) -> Reply:
        if event.kind == EventKind.BUTTON_PRESS:
            return self._press(event)
        if event.is_command:
            return self._command(event)

        live = self.registry.live_kinds(event.actor_id)
        if not live:
            return Reply(UNRECOGNIZED)
        slot = self.registry.get(event.actor_id, live[0])
        if slot is None:
            return Reply(UNRECOGNIZED)

        if event.text.lower() == "cancel":
            self.registry.discard(event.actor_id, slot.kind)
            return Reply("Operation cancelled.")

        reply = self.handlers[slot.kind].handle_input(slot, event)
        self.registry.touch(slot)
        return reply

    def _press(self, event: ActorEvent) -> Reply:
        act = Action.parse(event.payload)
        if act is None:
            return Reply(UNRECOGNIZED)
        try:
            kind = WorkflowKind(act.kind)
        except ValueError:
            return Reply(UNRECOGNIZED)
        return self.handlers[kind].handle_action(event, act)

    def _command(self, event: ActorEvent) -> Reply:
        head, _, args = event.text.partition(" ")
        name = head[1:].split("@", 1)[0].lower()
        command = self.commands.get(name)
        if command is None:
            return Reply(UNRECOGNIZED)
        if command.admin_only:
            self.ctx.directory.require_admin(event.actor_id)
        logger.info("command_received", extra={"extra_fields": {"command": name}})
        return command.run(event, args.strip())

    def _cancel(self, event: ActorEvent, args: str) -> Reply:
        count = self.registry.cancel(event.actor_id)
        if not count:
            return Reply("Nothing to cancel.")
        return Reply(f"Cancelled {count} operation(s).")
