import csv
import io
from datetime import datetime, timezone

from ledger.errors import AccountNotFoundError, ValidationError
from ledger.models import Account, AccountStatus, EntryKind
from ledger.notifications import deliver

from ..events import ActorEvent, Button, Reply, action
from ..slots import WorkflowKind
from .base import WorkflowContext, page_count, page_of, parse_actor_id


USER_HELP = [
    "/start - register",
    "/balance - show your balance",
    "/usage - register a usage",
    "/history - your last 10 transactions",
    "/profile - your profile and totals",
    "/cancel - cancel the current operation",
    "/help - this list",
]

ADMIN_HELP = [
    "/recharge <user_id | @username | card:ID> - recharge an account",
    "/pending - usage requests waiting for approval",
    "/invite - create an invite code",
    "/invites - list invite codes",
    "/low_balance - find accounts with a low balance",
    "/recharges - browse recharge history",
    "/usages - browse usage history",
    "/stats - user and transaction totals",
    "/users [status] [page] - list users, optionally by status",
    "/user <user_id | @username | card:ID> - user details",
    "/export_users - all users as CSV",
    "/make_admin <id> - grant administrator rights",
    "/approve_user <id>, /block <id>, /unblock <id>, /disable <id> - change a user's status",
    "/delete <id>, then /confirm_delete <id> - delete a user",
]

STATUS_CHANGES = {
    "approve_user": (AccountStatus.ACTIVE, AccountStatus.PENDING, "approved"),
    "block": (AccountStatus.BLOCKED, None, "blocked"),
    "unblock": (AccountStatus.ACTIVE, AccountStatus.BLOCKED, "unblocked"),
    "disable": (AccountStatus.DISABLED, None, "disabled"),
}


class AccountCommands:
    """Single-step commands: no workflow slot is created."""

    def __init__(self, ctx: WorkflowContext):
        self.ctx = ctx

    def help(self, event: ActorEvent, args: str) -> Reply:
        lines = ["Available commands:"] + USER_HELP
        if self.ctx.directory.is_admin(event.actor_id):
            lines += ["", "Administrator commands:"] + ADMIN_HELP
        return Reply("\n".join(lines))

    def balance(self, event: ActorEvent, args: str) -> Reply:
        account = self.ctx.directory.require_active_account(event.actor_id)
        text = f"Your current balance is {account.balance:.2f} kWh."
        if account.balance < self.ctx.settings.low_balance_threshold:
            text += " Warning: your balance is low. Please contact an administrator for a recharge."
        return Reply(text)

    def history(self, event: ActorEvent, args: str) -> Reply:
        account = self.ctx.directory.require_active_account(event.actor_id)
        history = self.ctx.ledger.get_ledger_history(account.id, limit=10)
        if not history.entries:
            return Reply("You have no transactions yet.")
        lines = [f"Your last transactions (balance {history.current_balance:.2f} kWh):"]
        lines += [self._entry_line(entry) for entry in history.entries]
        return Reply("\n".join(lines))

    def invites(self, event: ActorEvent, args: str) -> Reply:
        invites = self.ctx.directory.list_invites()
        if not invites:
            return Reply("No invite codes yet. Use /invite to create one.")
        lines = ["Invite codes:"]
        for invite in invites:
            if invite.is_used:
                state = f"used by {invite.used_by}"
            elif invite.is_valid():
                state = f"valid until {invite.expires_at:%d/%m/%Y}"
            else:
                state = "expired"
            lines.append(f"{invite.code} | {state}" + (f" | {invite.notes}" if invite.notes else ""))
        return Reply("\n".join(lines))

    def pending(self, event: ActorEvent, args: str) -> Reply:
        entries = self.ctx.ledger.list_pending_usage()
        if not entries:
            return Reply("No usage requests are waiting for approval.")
        lines = [f"{len(entries)} usage request(s) waiting for approval:"]
        buttons = []
        for number, entry in enumerate(entries, start=1):
            lines.append(
                f"{number}. {entry.created_at:%d/%m/%Y %H:%M} | {entry.amount} kWh | "
                f"{entry.previous_balance:.2f} -> {entry.new_balance:.2f}"
            )
            buttons.append([
                Button(f"Approve {number}", action(WorkflowKind.USAGE_REGISTRATION, "approve", entry.id)),
                Button(f"Reject {number}", action(WorkflowKind.USAGE_REGISTRATION, "reject", entry.id)),
            ])
        return Reply("\n".join(lines), buttons)

    def change_status(self, command: str, event: ActorEvent, args: str) -> Reply:
        new_status, expected, verb = STATUS_CHANGES[command]
        target = parse_actor_id(args, f"Usage: /{command} <user_id>")
        self.ctx.directory.transition_status(target, new_status, expected=expected)
        deliver(self.ctx.messenger, target, f"Your account was {verb} by an administrator.")
        return Reply(f"User {target} {verb}.")


    def profile(self, event: ActorEvent, args: str) -> Reply:
        account = self.ctx.directory.require_account(event.actor_id)
        return Reply("\n".join(["Your profile:"] + self._describe(account)))

    def stats(self, event: ActorEvent, args: str) -> Reply:
        counts = self.ctx.directory.count_by_status()
        totals = self.ctx.ledger.entry_totals()
        lines = [
            "Users:",
            f"Registered: {sum(counts.values()) - counts[AccountStatus.DISABLED]}",
            f"Active: {counts[AccountStatus.ACTIVE]}",
            f"Pending: {counts[AccountStatus.PENDING]}",
            f"Blocked: {counts[AccountStatus.BLOCKED]}",
            f"Disabled: {counts[AccountStatus.DISABLED]}",
            "",
            "Transactions:",
            f"Total: {totals.total}",
            f"Recharges approved: {totals.charges} ({totals.kwh_charged:.2f} kWh)",
            f"Usages approved: {totals.usages} ({totals.kwh_used:.2f} kWh)",
            f"Waiting for approval: {totals.pending}",
            f"Rejected: {totals.rejected}",
            "",
            f"Total balance: {self.ctx.ledger.total_balance():.2f} kWh",
        ]
        return Reply("\n".join(lines))

    def users(self, event: ActorEvent, args: str) -> Reply:
        usage = "Usage: /users [active | pending | blocked | disabled] [page]"
        status, page = None, 1
        for token in args.split():
            if token.isdigit():
                page = int(token)
                continue
            try:
                status = AccountStatus(token.lower())
            except ValueError:
                raise ValidationError(f"Unknown account status {token!r}", prompt=usage)

        accounts = self.ctx.directory.list_accounts(status)
        label = status.value if status else "all"
        if not accounts:
            return Reply(f"No users found ({label}).")

        size = self.ctx.settings.history_page_size
        pages = page_count(len(accounts), size)
        if not 1 <= page <= pages:
            raise ValidationError(f"Page {page} out of range", prompt=f"There are {pages} page(s) of users.")

        first = (page - 1) * size + 1
        lines = [f"Users ({label}, page {page}/{pages}, {len(accounts)} total):"]
        for number, account in enumerate(page_of(accounts, page, size), start=first):
            lines.append(
                f"{number}. {self._name(account.actor_id)} (id {account.actor_id}) | {account.card_id or '-'} | "
                f"{account.balance:.2f} kWh | {account.status.value}"
            )
        if page < pages:
            lines.append(f"Next page: /users {status.value + ' ' if status else ''}{page + 1}")
        return Reply("\n".join(lines))

    def user(self, event: ActorEvent, args: str) -> Reply:
        if not args:
            raise ValidationError("Missing user query", prompt="Usage: /user <user_id | @username | card:ID>")
        account = self.ctx.directory.find_account(args)
        lines = self._describe(account)
        entries = self.ctx.ledger.get_ledger_history(account.id, limit=5).entries
        if entries:
            lines += ["", "Last transactions:"] + [self._entry_line(entry) for entry in entries]
        return Reply("\n".join(lines))

    def export_users(self, event: ActorEvent, args: str) -> Reply:
        accounts = self.ctx.directory.list_accounts()
        if not accounts:
            return Reply("No users to export.")
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow([
            "actor_id", "first_name", "last_name", "username", "card_id",
            "balance", "status", "role", "registered_at",
        ])
        for account in accounts:
            actor = self.ctx.directory.get_actor(account.actor_id)
            writer.writerow([
                account.actor_id,
                actor.first_name if actor else "",
                actor.last_name if actor else "",
                actor.username if actor else "",
                account.card_id or "",
                f"{account.balance:.2f}",
                account.status.value,
                "admin" if self.ctx.directory.is_admin(account.actor_id) else "user",
                account.created_at.isoformat(),
            ])
        self.ctx.messenger.send_document(
            event.actor_id,
            f"users_{datetime.now(timezone.utc):%Y%m%d}.csv",
            buffer.getvalue().encode("utf-8"),
            caption=f"{len(accounts)} user(s)",
        )
        return Reply("CSV export sent.")

    def make_admin(self, event: ActorEvent, args: str) -> Reply:
        target = parse_actor_id(args, "Usage: /make_admin <user_id>")
        self.ctx.directory.make_admin(target)
        deliver(self.ctx.messenger, target, "You are now an administrator. Use /help to see your new commands.")
        return Reply(f"User {target} is now an administrator.")

    def delete(self, event: ActorEvent, args: str) -> Reply:
        """First step of a deletion: show who would be removed."""
        target = parse_actor_id(args, "Usage: /delete <user_id>")
        account = self.ctx.directory.get_account_by_actor(target)
        if account is not None:
            lines = ["This user will be deleted:"] + self._describe(account)
        elif self.ctx.directory.get_actor(target) is not None:
            lines = [f"User {target} ({self._name(target)}) has no account and will be deleted."]
        else:
            raise AccountNotFoundError(f"Actor {target} not found", prompt="User not found.")
        lines += ["", f"Send /confirm_delete {target} to proceed. Their ledger entries are kept."]
        return Reply("\n".join(lines))

    def confirm_delete(self, event: ActorEvent, args: str) -> Reply:
        target = parse_actor_id(args, "Usage: /confirm_delete <user_id>")
        if not self.ctx.directory.delete_actor(target):
            raise AccountNotFoundError(f"Actor {target} not found", prompt="User not found.")
        return Reply(f"User {target} deleted. Their ledger entries are kept.")

    def _name(self, actor_id: int) -> str:
        actor = self.ctx.directory.get_actor(actor_id)
        return actor.display_name if actor else str(actor_id)

    def _describe(self, account: Account) -> list[str]:
        actor = self.ctx.directory.get_actor(account.actor_id)
        totals = self.ctx.ledger.entry_totals(account.id)
        handle = f" (@{actor.username})" if actor and actor.username else ""
        lines = [
            f"Name: {self._name(account.actor_id)}",
            f"User id: {account.actor_id}{handle}",
            f"Card: {account.card_id or '-'}",
            f"Balance: {account.balance:.2f} kWh",
            f"Status: {account.status.value}",
            f"Role: {'administrator' if self.ctx.directory.is_admin(account.actor_id) else 'user'}",
            f"Registered: {account.created_at:%d/%m/%Y}",
            f"Recharges: {totals.charges} ({totals.kwh_charged:.2f} kWh)",
            f"Usages: {totals.usages} ({totals.kwh_used:.2f} kWh)",
        ]
        if totals.pending:
            lines.append(f"Waiting for approval: {totals.pending}")
        return lines

    @staticmethod
    def _entry_line(entry) -> str:
        sign = "+" if entry.kind == EntryKind.CHARGE else "-"
        return (
            f"{entry.created_at:%d/%m/%Y %H:%M} | {entry.kind.value} {sign}{entry.amount} kWh | "
            f"{entry.status.value}"
        )
