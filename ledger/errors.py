from typing import Optional


class LedgerError(Exception):
    """Base for every failure raised by the ledger and the workflows it hosts."""

    def __init__(self, message: str, prompt: Optional[str] = None):
        super().__init__(message)
        self.prompt = prompt

    @property
    def reply_text(self) -> str:
        return self.prompt or str(self)


class ValidationError(LedgerError):
    pass


class InsufficientBalanceError(ValidationError):
    pass


class StateError(LedgerError):
    pass


class EntryNotFoundError(StateError):
    pass


class AccountNotFoundError(StateError):
    pass


class EntryAlreadyProcessedError(StateError):
    pass


class BalanceConflictError(StateError):
    pass


class WorkflowExpiredError(StateError):
    pass


class WorkflowBusyError(StateError):
    pass


class AccountStatusError(LedgerError):
    pass


class PersistenceError(LedgerError):
    pass


class ConcurrencyConflictError(PersistenceError):
    pass
