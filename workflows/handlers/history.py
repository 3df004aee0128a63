import csv
import io
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from ledger.errors import StateError, ValidationError
from ledger.models import EntryKind, LedgerEntry

from ..events import Action, ActorEvent, Button, Reply, action
from ..slots import Step, WorkflowKind, WorkflowSlot
from .base import WorkflowHandler, page_buttons, page_count, page_of, parse_page, require_text


PERIODS = ("today", "yesterday", "week", "month", "latest")


@dataclass
class Period:
    label: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    latest: bool = False


def _day_bounds(day: datetime) -> tuple[datetime, datetime]:
    start = datetime.combine(day.date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def parse_period(raw: str, now: Optional[datetime] = None) -> Period:
    """``today``, ``yesterday``, ``week``, ``month``, ``latest`` or a ``DD/MM/YYYY`` day."""
    now = now or datetime.now(timezone.utc)
    value = raw.strip().lower()
    today_start, today_end = _day_bounds(now)

    if value == "today":
        return Period("today", today_start, today_end)
    if value == "yesterday":
        start, end = _day_bounds(now - timedelta(days=1))
        return Period("yesterday", start, end)
    if value == "week":
        return Period("the last 7 days", today_start - timedelta(days=7), today_end)
    if value == "month":
        return Period("the last 30 days", today_start - timedelta(days=30), today_end)
    if value == "latest":
        return Period("latest", latest=True)

    try:
        day = datetime.strptime(value, "%d/%m/%Y")
    except ValueError:
        raise ValidationError(
            f"Unrecognized period {raw!r}",
            prompt="Invalid period. Choose today, yesterday, week, month, latest or a date as DD/MM/YYYY:",
        )
    start, end = _day_bounds(day)
    return Period(f"{day:%d/%m/%Y}", start, end)


class HistoryHandler(WorkflowHandler):
    """Browse approved entries of one kind by period, newest first."""

    entry_kind: EntryKind
    title: str

    def start(self, event: ActorEvent, args: str) -> Reply:
        self.registry.start_workflow(event.actor_id, self.kind, Step.WAITING_FOR_PERIOD)
        return Reply(
            f"{self.title}: choose a period, or type a date as DD/MM/YYYY.",
            [
                [Button(p.capitalize(), action(self.kind, "period", p)) for p in PERIODS[:3]],
                [Button(p.capitalize(), action(self.kind, "period", p)) for p in PERIODS[3:]],
            ],
        )

    def handle_input(self, slot: WorkflowSlot, event: ActorEvent) -> Reply:
        if slot.step == Step.BROWSING:
            raise ValidationError(
                f"{self.kind.value} results are being browsed",
                prompt="Use the buttons below the results, or type cancel.",
            )
        return self._select(slot, require_text(event, "Please type a period or a date as DD/MM/YYYY:"))

    def _select(self, slot: WorkflowSlot, raw: str) -> Reply:
        period = parse_period(raw, self.registry.now())
        settings = self.ctx.settings
        limit = settings.latest_history_limit if period.latest else settings.history_limit
        entries = self.ctx.ledger.find_entries(
            self.entry_kind, start=period.start, end=period.end, limit=limit,
        )
        if not entries:
            return self.finish(slot, Reply(f"No {self.title.lower()} found for {period.label}."))

        pages = page_count(len(entries), settings.history_page_size)
        if pages == 1:
            return self.finish(slot, Reply(self._render(entries, len(entries), period.label, 1, 1)))

        slot.advance(Step.BROWSING, entries=entries, label=period.label)
        self.registry.touch(slot)
        return self._page(slot, 1)

    def _line(self, entry: LedgerEntry) -> str:
        sign = "+" if entry.kind == EntryKind.CHARGE else "-"
        line = (
            f"{entry.created_at:%d/%m/%Y %H:%M} | {self.account_holder(entry.account_id)} | "
            f"{sign}{entry.amount} kWh | {entry.previous_balance:.2f} -> {entry.new_balance:.2f}"
        )
        return f"{line} | {entry.notes}" if entry.notes else line

    def _render(self, rows: list[LedgerEntry], total: int, label: str, page: int, pages: int) -> str:
        header = f"{self.title} for {label} ({total} total, page {page}/{pages}):"
        return "\n".join([header] + [self._line(entry) for entry in rows])

    def _page(self, slot: WorkflowSlot, page: int) -> Reply:
        entries = slot.payload["entries"]
        size = self.ctx.settings.history_page_size
        rows = page_of(entries, page, size)
        pages = page_count(len(entries), size)
        buttons = page_buttons(self.kind, page, pages)
        buttons.insert(-1, [Button("CSV", action(self.kind, "csv"))])
        return Reply(self._render(rows, len(entries), slot.payload["label"], page, pages), buttons)

    def _csv(self, slot: WorkflowSlot, actor_id: int) -> Reply:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["created_at", "holder", "kind", "amount", "previous_balance", "new_balance", "notes"])
        for entry in slot.payload["entries"]:
            writer.writerow([
                entry.created_at.isoformat(),
                self.account_holder(entry.account_id),
                entry.kind.value,
                str(entry.amount),
                f"{entry.previous_balance:.2f}",
                f"{entry.new_balance:.2f}",
                entry.notes,
            ])
        self.ctx.messenger.send_document(
            actor_id,
            f"{self.kind.value}_{datetime.now(timezone.utc):%Y%m%d}.csv",
            buffer.getvalue().encode("utf-8"),
            caption=f"{self.title} for {slot.payload['label']}",
        )
        return self.finish(slot, Reply("CSV export sent."))

    def handle_action(self, event: ActorEvent, act: Action) -> Reply:
        if act.name == "period":
            slot = self.registry.require(event.actor_id, self.kind, Step.WAITING_FOR_PERIOD)
            return self._select(slot, act.arg or "")

        slot = self.registry.require(event.actor_id, self.kind, Step.BROWSING)
        if act.name == "page":
            reply = self._page(slot, parse_page(act))
            self.registry.touch(slot)
            return reply
        if act.name == "csv":
            return self._csv(slot, event.actor_id)
        if act.name == "close":
            return self.finish(slot, Reply("History closed."))
        raise StateError(f"Unknown history action {act.name!r}", prompt="This button is no longer valid.")


class RechargeHistoryHandler(HistoryHandler):
    kind = WorkflowKind.RECHARGE_HISTORY
    entry_kind = EntryKind.CHARGE
    title = "Recharges"


class UsageHistoryHandler(HistoryHandler):
    kind = WorkflowKind.USAGE_HISTORY
    entry_kind = EntryKind.USAGE
    title = "Usages"
