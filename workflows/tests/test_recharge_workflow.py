"""
Unit Tests for Recharge Confirmation

Tests cover:
1. Amount entry, confirm and cancel
2. Expiry of an unconfirmed dialog
3. A second start while a recharge is in progress
4. A stale dialog confirmed after an intervening balance change
5. Target lookup and status checks
"""

from decimal import Decimal

from ledger.models import AccountStatus, EntryKind, EntryStatus
from ledger.storage import ENTRIES
from workflows.slots import Step, WorkflowKind


ADMIN = 1
CONFIRM = f"recharge:confirm:{ADMIN}"
CANCEL = f"recharge:cancel:{ADMIN}"


class TestRechargeFlow:
    """Tests for the happy path."""

    def test_recharge_confirmed(self, engine, send, press, seed):
        """Balance 50.00 recharged by 25.50 and confirmed ends at 75.50."""
        account = seed(5, balance="50.00")

        start = send(ADMIN, "/recharge 5")
        prompt = send(ADMIN, "25.50")

        assert "50.00" in start.text
        assert [b.action for b in prompt.buttons[0]] == [CONFIRM, CANCEL]
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE).step == Step.WAITING_FOR_CONFIRMATION
        assert engine.ledger.get_account(account.id).balance == Decimal("50.00")

        done = press(ADMIN, CONFIRM)

        assert "75.50" in done.text
        assert engine.ledger.get_account(account.id).balance == Decimal("75.50")
        entries = engine.storage.find(ENTRIES)
        assert len(entries) == 1
        assert entries[0]["kind"] == EntryKind.CHARGE
        assert entries[0]["status"] == EntryStatus.APPROVED
        assert entries[0]["previous_balance"] == Decimal("50.00")
        assert entries[0]["new_balance"] == Decimal("75.50")
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE) is None

        # The holder is notified
        assert any("75.50" in m.text for m in engine.messenger.sent_to(5, "notification"))

    def test_recharge_cancelled(self, engine, send, press, seed):
        account = seed(5, balance="50.00")
        send(ADMIN, "/recharge 5")
        send(ADMIN, "10")

        assert press(ADMIN, CANCEL).text == "Recharge cancelled."
        assert engine.ledger.get_account(account.id).balance == Decimal("50.00")
        assert engine.storage.find(ENTRIES) == []
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE) is None

    def test_invalid_amount_reprompts(self, engine, send, seed):
        seed(5, balance="50.00")
        send(ADMIN, "/recharge 5")

        reply = send(ADMIN, "20000")

        assert "max 10000" in reply.text
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE).step == Step.WAITING_FOR_AMOUNT

    def test_huge_and_sub_cent_amounts_reprompt(self, engine, send, seed):
        seed(5, balance="50.00")
        send(ADMIN, "/recharge 5")

        huge = send(ADMIN, "1e30")
        tiny = send(ADMIN, "0.005")

        assert "max 10000" in huge.text
        assert "error code" not in huge.text
        assert "two decimal places" in tiny.text
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE).step == Step.WAITING_FOR_AMOUNT

    def test_text_during_confirmation_reprompts(self, engine, send, seed):
        seed(5, balance="50.00")
        send(ADMIN, "/recharge 5")
        send(ADMIN, "10")

        reply = send(ADMIN, "yes")

        assert "Confirm" in reply.text
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE).step == Step.WAITING_FOR_CONFIRMATION


class TestExpiry:
    """Tests for unconfirmed dialogs."""

    def test_reaped_dialog_cannot_be_confirmed(self, engine, clock, send, press, seed):
        """40 idle minutes later the slot is gone and confirm is answered as expired."""
        account = seed(5, balance="40.00")
        send(ADMIN, "/recharge 5")
        send(ADMIN, "10")

        clock.advance(minutes=40)
        assert engine.reaper.reap_idle_slots() == 1

        reply = press(ADMIN, CONFIRM)

        assert "expired" in reply.text
        assert engine.ledger.get_account(account.id).balance == Decimal("40.00")
        assert engine.storage.find(ENTRIES) == []
        answers = engine.messenger.sent_to(ADMIN, "button_answer")
        assert "expired" in answers[-1].text

    def test_confirm_before_amount_is_expired(self, engine, send, press, seed):
        seed(5, balance="40.00")
        send(ADMIN, "/recharge 5")

        assert "expired" in press(ADMIN, CONFIRM).text

    def test_confirm_of_another_admins_dialog(self, engine, send, press, seed):
        account = seed(5, balance="40.00")
        engine.settings.admin_ids.append(2)
        send(ADMIN, "/recharge 5")
        send(ADMIN, "10")

        reply = press(2, CONFIRM)

        assert "another administrator" in reply.text
        assert engine.ledger.get_account(account.id).balance == Decimal("40.00")
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE) is not None


class TestSecondStart:
    """Tests for starting a recharge while one is in progress."""

    def test_second_start_is_refused_as_busy(self, engine, send, seed):
        seed(5, balance="40.00")
        seed(6, balance="10.00")
        send(ADMIN, "/recharge 5")
        send(ADMIN, "10")

        reply = send(ADMIN, "/recharge 6")

        assert "already in progress" in reply.text
        slot = engine.registry.get(ADMIN, WorkflowKind.RECHARGE)
        assert slot.payload["target_actor_id"] == 5
        assert slot.payload["amount"] == Decimal("10.00")

    def test_start_allowed_again_after_cancel(self, engine, send, seed):
        seed(5, balance="40.00")
        seed(6, balance="10.00")
        send(ADMIN, "/recharge 5")
        send(ADMIN, "/cancel")

        send(ADMIN, "/recharge 6")

        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE).payload["target_actor_id"] == 6


class TestStaleDialog:
    """Tests that confirming an old dialog never discards an intervening change."""

    def test_confirm_adds_to_current_balance(self, engine, send, press, seed):
        account = seed(5, balance="100.00")
        send(ADMIN, "/recharge 5")
        send(ADMIN, "10")

        # Another administrator recharges in the meantime
        engine.ledger.apply_charge(account.id, Decimal("30"), actor_id=2)

        press(ADMIN, CONFIRM)

        assert engine.ledger.get_account(account.id).balance == Decimal("140.00")
        latest = engine.ledger.find_entries(EntryKind.CHARGE, limit=2)
        amounts = sorted((e.previous_balance, e.new_balance) for e in latest)
        assert amounts == [(Decimal("100.00"), Decimal("130.00")), (Decimal("130.00"), Decimal("140.00"))]


class TestTargets:
    """Tests for recharge target lookup."""

    def test_lookup_by_username_and_card(self, engine, send, seed):
        seed(5, balance="1.00", username="ada")

        assert "User5" in send(ADMIN, "/recharge @ada").text
        send(ADMIN, "/cancel")
        assert "User5" in send(ADMIN, "/recharge card:CARD-5").text

    def test_missing_argument(self, send):
        assert "Usage: /recharge" in send(ADMIN, "/recharge").text

    def test_unknown_target(self, engine, send):
        assert "not found" in send(ADMIN, "/recharge 42").text
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE) is None

    def test_inactive_target(self, engine, send, seed):
        seed(5, balance="1.00", status=AccountStatus.BLOCKED)

        assert "blocked" in send(ADMIN, "/recharge 5").text
        assert engine.registry.get(ADMIN, WorkflowKind.RECHARGE) is None
