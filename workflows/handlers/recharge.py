"""
Recharge confirmation.

An administrator picks a target account, enters an amount and must confirm before
the charge is applied. The confirm and cancel buttons carry the initiating
administrator's id; without a live ``waiting_for_confirmation`` slot for that id
the press is answered as expired. On confirm only the account id and amount are
taken from the slot: the balance is re-read at write time by
:meth:`LedgerService.apply_charge`.
"""

import logging

from ledger.errors import StateError, ValidationError, WorkflowBusyError
from ledger.service import ensure_active, parse_amount

from ..events import Action, ActorEvent, Button, Reply, action
from ..slots import Step, WorkflowKind, WorkflowSlot
from .base import WorkflowHandler, parse_actor_id, require_text


logger = logging.getLogger("kwh.workflows.recharge")

USAGE = "Usage: /recharge <user_id | @username | card:ID>"


class RechargeConfirmation(WorkflowHandler):
    kind = WorkflowKind.RECHARGE

    def start(self, event: ActorEvent, args: str) -> Reply:
        if not args.strip():
            raise ValidationError("Recharge target missing", prompt=USAGE)
        if self.registry.get(event.actor_id, self.kind) is not None:
            raise WorkflowBusyError(
                f"Actor {event.actor_id} already has a recharge in progress",
                prompt="A recharge is already in progress. Confirm or cancel it first, or use /cancel.",
            )

        account = self.ctx.directory.find_account(args)
        ensure_active(account)
        holder = self.display_name(account.actor_id)
        self.registry.start_workflow(
            event.actor_id,
            self.kind,
            Step.WAITING_FOR_AMOUNT,
            account_id=account.id,
            target_actor_id=account.actor_id,
            holder=holder,
        )
        return Reply(
            f"Recharging {holder} (card {account.card_id}). "
            f"Current balance: {account.balance:.2f} kWh. "
            f"Enter the amount of kWh to add (max {self.ctx.settings.max_amount}):"
        )

    def handle_input(self, slot: WorkflowSlot, event: ActorEvent) -> Reply:
        if slot.step == Step.WAITING_FOR_CONFIRMATION:
            raise ValidationError(
                f"Recharge of {event.actor_id} awaits confirmation",
                prompt="Please use the Confirm or Cancel buttons, or type cancel.",
            )

        ceiling = self.ctx.settings.max_amount
        amount = parse_amount(
            require_text(event, f"Please enter a valid positive amount (max {ceiling} kWh):"),
            ceiling,
        )
        slot.advance(Step.WAITING_FOR_CONFIRMATION, amount=amount)
        return Reply(
            f"Add {amount} kWh to {slot.payload['holder']}?",
            [[
                Button("Confirm", action(self.kind, "confirm", event.actor_id)),
                Button("Cancel", action(self.kind, "cancel", event.actor_id)),
            ]],
        )

    def handle_action(self, event: ActorEvent, act: Action) -> Reply:
        initiator = parse_actor_id(act.arg, "This button is no longer valid.")
        if initiator != event.actor_id:
            raise StateError(
                f"Actor {event.actor_id} pressed a recharge button of {initiator}",
                prompt="This confirmation belongs to another administrator.",
            )

        if act.name == "confirm":
            slot = self.registry.require(initiator, self.kind, Step.WAITING_FOR_CONFIRMATION)
            entry = self.ctx.ledger.apply_charge(slot.payload["account_id"], slot.payload["amount"], event.actor_id)
            logger.info(
                "recharge_confirmed",
                extra={"extra_fields": {"entry_id": str(entry.id), "target_actor_id": slot.payload["target_actor_id"]}},
            )
            return self.finish(slot, Reply(
                f"Recharge completed: +{entry.amount} kWh for {slot.payload['holder']}. "
                f"Balance {entry.previous_balance:.2f} -> {entry.new_balance:.2f} kWh."
            ))
        if act.name == "cancel":
            slot = self.registry.require(initiator, self.kind)
            return self.finish(slot, Reply("Recharge cancelled."))
        raise StateError(f"Unknown recharge action {act.name!r}", prompt="This button is no longer valid.")
