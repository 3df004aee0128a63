import csv
import io
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

from ledger.errors import StateError, ValidationError
from ledger.models import Account

from ..events import Action, ActorEvent, Button, Reply, action
from ..slots import Step, WorkflowKind, WorkflowSlot
from .base import WorkflowHandler, page_buttons, page_count, page_of, parse_page, require_text


class LowBalanceSearchHandler(WorkflowHandler):
    kind = WorkflowKind.LOW_BALANCE_SEARCH

    def _prompt(self) -> str:
        return (
            "Enter the balance threshold in kWh "
            f"(default {self.ctx.settings.low_balance_threshold}), or type 'default':"
        )

    def start(self, event: ActorEvent, args: str) -> Reply:
        self.registry.start_workflow(event.actor_id, self.kind, Step.WAITING_FOR_THRESHOLD)
        return Reply(self._prompt())

    def _parse_threshold(self, raw: str) -> Decimal:
        if raw.lower() == "default":
            return self.ctx.settings.low_balance_threshold
        try:
            threshold = Decimal(raw.replace(",", "."))
        except InvalidOperation:
            raise ValidationError(f"Threshold {raw!r} is not numeric", prompt=self._prompt())
        if not threshold.is_finite() or threshold < 0 or threshold > self.ctx.settings.max_amount:
            raise ValidationError(f"Threshold {raw!r} out of range", prompt=self._prompt())
        return threshold

    def handle_input(self, slot: WorkflowSlot, event: ActorEvent) -> Reply:
        if slot.step == Step.BROWSING:
            raise ValidationError(
                "Low-balance results are being browsed",
                prompt="Use the buttons below the results, or type cancel.",
            )

        threshold = self._parse_threshold(require_text(event, self._prompt()))
        accounts = self.ctx.ledger.find_low_balance(threshold)
        if not accounts:
            return self.finish(slot, Reply(f"No active accounts below {threshold} kWh."))

        slot.advance(Step.BROWSING, threshold=threshold)
        return Reply(
            f"{len(accounts)} active account(s) below {threshold} kWh.",
            [
                [
                    Button("List", action(self.kind, "page", 1)),
                    Button("CSV", action(self.kind, "csv")),
                ],
                [Button("Close", action(self.kind, "close"))],
            ],
        )

    def _line(self, account: Account) -> str:
        return f"{self.display_name(account.actor_id)} | card {account.card_id} | {account.balance:.2f} kWh"

    def handle_action(self, event: ActorEvent, act: Action) -> Reply:
        slot = self.registry.require(event.actor_id, self.kind, Step.BROWSING)

        if act.name == "close":
            return self.finish(slot, Reply("Low-balance search closed."))

        threshold = slot.payload["threshold"]
        accounts = self.ctx.ledger.find_low_balance(threshold)

        if act.name == "page":
            size = self.ctx.settings.history_page_size
            page = parse_page(act)
            rows = page_of(accounts, page, size)
            pages = page_count(len(accounts), size)
            self.registry.touch(slot)
            return Reply(
                f"Accounts below {threshold} kWh (page {page}/{pages}):\n"
                + "\n".join(self._line(account) for account in rows),
                page_buttons(self.kind, page, pages),
            )

        if act.name == "csv":
            buffer = io.StringIO()
            writer = csv.writer(buffer)
            writer.writerow(["actor_id", "name", "card_id", "balance", "status"])
            for account in accounts:
                writer.writerow([
                    account.actor_id,
                    self.display_name(account.actor_id),
                    account.card_id,
                    f"{account.balance:.2f}",
                    account.status.value,
                ])
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
            self.ctx.messenger.send_document(
                event.actor_id,
                f"low_balance_{stamp}.csv",
                buffer.getvalue().encode("utf-8"),
                caption=f"{len(accounts)} account(s) below {threshold} kWh",
            )
            return self.finish(slot, Reply("CSV export sent."))

        raise StateError(f"Unknown low-balance action {act.name!r}", prompt="This button is no longer valid.")
