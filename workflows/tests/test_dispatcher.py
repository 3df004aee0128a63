"""
Unit Tests for the Step Dispatcher

Tests cover:
1. Command table and role checks
2. Priority routing of free text
3. Button routing by kind tag
4. Error boundary (re-prompt, expired, status, unexpected failures)
5. Cancellation
"""

from ledger.models import AccountStatus
from workflows import EventKind
from workflows.slots import Step, WorkflowKind


ADMIN = 1


class TestCommands:
    """Tests for command routing."""

    def test_unrecognized_text_and_command(self, send):
        assert "Unrecognized" in send(5, "hello").text
        assert "Unrecognized" in send(5, "/frobnicate").text

    def test_help_lists_admin_commands_for_admins_only(self, send):
        assert "/recharge" not in send(5, "/help").text
        assert "/recharge" in send(ADMIN, "/help").text

    def test_admin_command_denied_to_ordinary_actor(self, engine, send, seed):
        seed(5, balance="10.00")

        reply = send(5, "/recharge 5")

        assert "Access denied" in reply.text
        assert engine.registry.live_kinds(5) == []

    def test_command_with_bot_suffix(self, send):
        assert "Available commands" in send(5, "/help@kwh_bot").text

    def test_commands_take_precedence_over_slot_text(self, engine, send, seed):
        seed(5, balance="10.00")
        send(5, "/usage")

        reply = send(5, "/balance")

        assert "10.00" in reply.text
        assert engine.registry.get(5, WorkflowKind.USAGE_REGISTRATION).step == Step.WAITING_FOR_AMOUNT

    def test_balance_warns_when_low(self, send, seed):
        seed(5, balance="10.00")
        seed(6, balance="50.00")

        assert "low" in send(5, "/balance").text
        assert "low" not in send(6, "/balance").text

    def test_unregistered_actor_is_told_to_register(self, send):
        assert "/start" in send(5, "/balance").text


class TestRouting:
    """Tests for routing free text and button presses."""

    def test_text_goes_to_highest_priority_slot(self, engine, send, seed):
        seed(ADMIN, balance="50.00")
        send(ADMIN, "/low_balance")
        send(ADMIN, "/usage")

        reply = send(ADMIN, "5")

        assert "photo" in reply.text
        assert engine.registry.get(ADMIN, WorkflowKind.USAGE_REGISTRATION).step == Step.WAITING_FOR_PHOTO
        assert engine.registry.get(ADMIN, WorkflowKind.LOW_BALANCE_SEARCH).step == Step.WAITING_FOR_THRESHOLD

    def test_cancel_text_discards_only_the_routed_slot(self, engine, send, seed):
        seed(ADMIN, balance="50.00")
        send(ADMIN, "/low_balance")
        send(ADMIN, "/usage")

        reply = send(ADMIN, "Cancel")

        assert reply.text == "Operation cancelled."
        assert engine.registry.live_kinds(ADMIN) == [WorkflowKind.LOW_BALANCE_SEARCH]

    def test_photo_without_slot_is_unrecognized(self, send):
        assert "Unrecognized" in send(5, "file-1", EventKind.PHOTO).text

    def test_button_with_unknown_kind(self, engine, press):
        reply = press(5, "bogus:do:1")

        assert "Unrecognized" in reply.text
        assert "Unrecognized" in press(5, "nonsense").text
        answers = engine.messenger.sent_to(5, "button_answer")
        assert len(answers) == 2

    def test_reply_is_sent_through_messenger(self, engine, send):
        send(5, "/help")

        replies = engine.messenger.sent_to(5, "reply")
        assert len(replies) == 1
        assert "Available commands" in replies[0].text


class TestErrorBoundary:
    """Tests for converting failures into replies."""

    def test_malformed_input_reprompts_and_keeps_slot_unrefreshed(self, engine, clock, send, seed):
        seed(5, balance="10.00")
        send(5, "/usage")
        slot = engine.registry.get(5, WorkflowKind.USAGE_REGISTRATION)
        started = slot.last_activity_at
        clock.advance(minutes=5)

        reply = send(5, "lots")

        assert "valid positive amount" in reply.text
        assert engine.registry.get(5, WorkflowKind.USAGE_REGISTRATION) is slot
        assert slot.step == Step.WAITING_FOR_AMOUNT
        assert slot.last_activity_at == started

    def test_successful_step_refreshes_activity(self, engine, clock, send, seed):
        seed(5, balance="10.00")
        send(5, "/usage")
        clock.advance(minutes=5)

        send(5, "3")

        assert engine.registry.get(5, WorkflowKind.USAGE_REGISTRATION).last_activity_at == clock.now

    def test_unexpected_failure_quotes_error_code(self, engine, send, monkeypatch, caplog):
        def explode(event, args):
            raise RuntimeError("storage offline")

        monkeypatch.setattr(engine.dispatcher.commands["help"], "run", explode)

        reply = send(5, "/help")

        assert "error code E" in reply.text
        code = reply.text.split("error code ")[1].rstrip(").")
        logged = [r for r in caplog.records if r.getMessage() == "dispatch_failed"]
        assert logged and logged[0].extra_fields["error_code"] == code
        assert logged[0].exc_info is not None

    def test_status_error_explains(self, send, seed):
        seed(5, balance="10.00", status=AccountStatus.BLOCKED)

        assert "blocked" in send(5, "/usage").text


class TestCancel:
    """Tests for /cancel."""

    def test_cancel_reports_count(self, engine, send, seed):
        seed(ADMIN, balance="50.00")
        send(ADMIN, "/usage")
        send(ADMIN, "/invite")
        send(ADMIN, "/recharges")

        assert send(ADMIN, "/cancel").text == "Cancelled 3 operation(s)."
        assert engine.registry.live_kinds(ADMIN) == []
        assert send(ADMIN, "/cancel").text == "Nothing to cancel."
