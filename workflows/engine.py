from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from common.config import Settings
from ledger.accounts import AccountDirectory
from ledger.approvals import ApprovalCoordinator
from ledger.service import LedgerService
from ledger.storage import InMemoryStorage

from .dispatcher import StepDispatcher
from .handlers import WorkflowContext
from .messaging import InMemoryMessenger, Messenger
from .reaper import IdleReaper
from .registry import WorkflowRegistry


@dataclass
class Engine:
    settings: Settings
    storage: InMemoryStorage
    messenger: Messenger
    ledger: LedgerService
    approvals: ApprovalCoordinator
    directory: AccountDirectory
    registry: WorkflowRegistry
    dispatcher: StepDispatcher
    reaper: IdleReaper


def build_engine(
    settings: Optional[Settings] = None,
    storage: Optional[InMemoryStorage] = None,
    messenger: Optional[Messenger] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Engine:
    settings = settings or Settings()
    storage = storage or InMemoryStorage()
    messenger = messenger or InMemoryMessenger()

    ledger = LedgerService(storage, settings, notifier=messenger)
    approvals = ApprovalCoordinator(ledger)
    directory = AccountDirectory(storage, settings)
    registry = WorkflowRegistry(timedelta(minutes=settings.idle_timeout_minutes), clock=clock)
    ctx = WorkflowContext(
        registry=registry,
        ledger=ledger,
        approvals=approvals,
        directory=directory,
        messenger=messenger,
        settings=settings,
    )
    return Engine(
        settings=settings,
        storage=storage,
        messenger=messenger,
        ledger=ledger,
        approvals=approvals,
        directory=directory,
        registry=registry,
        dispatcher=StepDispatcher(ctx),
        reaper=IdleReaper(registry, settings.reap_interval_minutes, test_mode=settings.test_mode),
    )
