"""
Unit Tests for Account Commands

Tests cover:
1. Profile for registered users
2. Administrator statistics
3. User listing with status filter and pages
4. User details and CSV export
5. Granting administrator rights
"""

import csv
import io
from decimal import Decimal

from ledger.models import AccountStatus, Role


ADMIN = 1


class TestProfile:
    """Tests for /profile."""

    def test_profile_shows_totals(self, engine, send, seed):
        account = seed(5, balance="20.00", username="ada")
        engine.ledger.apply_charge(account.id, Decimal("5"), actor_id=ADMIN)
        engine.ledger.request_usage(account.id, Decimal("3"), actor_id=5)

        text = send(5, "/profile").text

        assert "Name: User5" in text
        assert "User id: 5 (@ada)" in text
        assert "Card: CARD-5" in text
        assert "Balance: 25.00 kWh" in text
        assert "Recharges: 1 (5.00 kWh)" in text
        assert "Usages: 0 (0.00 kWh)" in text
        assert "Waiting for approval: 1" in text

    def test_pending_account_can_see_profile(self, send, seed):
        seed(5, status=AccountStatus.PENDING)

        assert "Status: pending" in send(5, "/profile").text

    def test_unregistered(self, send):
        assert "not registered" in send(7, "/profile").text


class TestStats:
    """Tests for /stats."""

    def test_counts_and_totals(self, engine, send, seed):
        account = seed(5, balance="10.00")
        seed(6, balance="2.50", status=AccountStatus.PENDING)
        seed(7, status=AccountStatus.BLOCKED)
        seed(8, status=AccountStatus.DISABLED)
        engine.ledger.apply_charge(account.id, Decimal("5"), actor_id=ADMIN)
        engine.ledger.request_usage(account.id, Decimal("3"), actor_id=5)

        lines = send(ADMIN, "/stats").text.splitlines()

        assert "Registered: 3" in lines
        assert "Active: 1" in lines
        assert "Pending: 1" in lines
        assert "Blocked: 1" in lines
        assert "Disabled: 1" in lines
        assert "Total: 2" in lines
        assert "Recharges approved: 1 (5.00 kWh)" in lines
        assert "Usages approved: 0 (0.00 kWh)" in lines
        assert "Waiting for approval: 1" in lines
        assert "Total balance: 17.50 kWh" in lines

    def test_admin_only(self, send, seed):
        seed(5)

        assert "Access denied" in send(5, "/stats").text


class TestUserList:
    """Tests for /users."""

    def test_pages(self, send, seed):
        for actor_id in range(10, 22):
            seed(actor_id)

        first = send(ADMIN, "/users").text
        second = send(ADMIN, "/users 2").text

        assert "page 1/2, 12 total" in first
        assert "Next page: /users 2" in first
        assert first.count(" kWh | ") == 10
        assert second.count(" kWh | ") == 2
        assert "\n11. " in second
        assert "Next page" not in second

    def test_status_filter(self, send, seed):
        seed(5)
        seed(6, status=AccountStatus.BLOCKED)

        text = send(ADMIN, "/users blocked").text

        assert "(blocked, page 1/1, 1 total)" in text
        assert "User6 (id 6)" in text
        assert "User5" not in text
        assert send(ADMIN, "/users disabled").text == "No users found (disabled)."

    def test_bad_arguments(self, send, seed):
        seed(5)

        assert "Usage: /users" in send(ADMIN, "/users frozen").text
        assert "There are 1 page(s)" in send(ADMIN, "/users 3").text


class TestUserDetails:
    """Tests for /user and /export_users."""

    def test_details_with_recent_entries(self, engine, send, seed):
        account = seed(5, balance="1.00", username="ada")
        engine.ledger.apply_charge(account.id, Decimal("5"), actor_id=ADMIN)

        text = send(ADMIN, "/user @ada").text

        assert "Name: User5" in text
        assert "Role: user" in text
        assert "Last transactions:" in text
        assert "charge +5.00 kWh | approved" in text

    def test_lookup_errors(self, send):
        assert "Usage: /user" in send(ADMIN, "/user").text
        assert send(ADMIN, "/user 42").text == "User not found."

    def test_export(self, engine, send, seed):
        seed(5, balance="12.50", username="ada")
        seed(6, status=AccountStatus.BLOCKED)

        assert send(ADMIN, "/export_users").text == "CSV export sent."

        document = engine.messenger.sent_to(ADMIN, "document")[-1]
        rows = {row["actor_id"]: row for row in csv.DictReader(io.StringIO(document.content.decode("utf-8")))}
        assert document.filename.startswith("users_")
        assert set(rows) == {"5", "6"}
        assert rows["5"]["username"] == "ada"
        assert rows["5"]["balance"] == "12.50"
        assert rows["6"]["status"] == "blocked"
        assert rows["6"]["role"] == "user"

    def test_export_without_users(self, send):
        assert send(ADMIN, "/export_users").text == "No users to export."


class TestMakeAdmin:
    """Tests for /make_admin."""

    def test_grants_admin_commands(self, engine, send, seed):
        seed(5)

        assert send(ADMIN, "/make_admin 5").text == "User 5 is now an administrator."
        assert engine.directory.get_actor(5).role == Role.ADMIN
        assert "Access denied" not in send(5, "/stats").text
        assert any("administrator" in m.text for m in engine.messenger.sent_to(5, "notification"))

    def test_twice_or_unknown(self, send, seed):
        seed(5)
        send(ADMIN, "/make_admin 5")

        assert "already an administrator" in send(ADMIN, "/make_admin 5").text
        assert send(ADMIN, "/make_admin 42").text == "User not found."
        assert "Usage: /make_admin" in send(ADMIN, "/make_admin me").text
