from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from common.config import Settings
from ledger.models import AccountStatus
from ledger.storage import ACCOUNTS
from workflows import ActorEvent, EventKind, build_engine


class FakeClock:
    def __init__(self):
        self.now = datetime.now(timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def engine(clock):
    return build_engine(Settings(admin_ids=[1], test_mode=True), clock=clock)


@pytest.fixture
def seed(engine):
    """Register an actor with an account in the given state and balance."""

    def _seed(actor_id, balance="0.00", username="", status=AccountStatus.ACTIVE):
        account = engine.directory.register(
            actor_id, f"CARD-{actor_id}", first_name=f"User{actor_id}", username=username,
        )
        engine.storage.update(ACCOUNTS, account.id, {"balance": Decimal(balance), "status": status})
        return engine.ledger.get_account(account.id)

    return _seed


@pytest.fixture
def send(engine):
    def _send(actor_id, payload, kind=EventKind.TEXT):
        return engine.dispatcher.dispatch(ActorEvent(actor_id, kind, payload))

    return _send


@pytest.fixture
def press(send):
    def _press(actor_id, data):
        return send(actor_id, data, EventKind.BUTTON_PRESS)

    return _press
