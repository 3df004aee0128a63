from .base import WorkflowContext, WorkflowHandler
from .commands import AccountCommands
from .history import RechargeHistoryHandler, UsageHistoryHandler
from .invite_codes import InviteCodeHandler
from .low_balance import LowBalanceSearchHandler
from .recharge import RechargeConfirmation
from .registration import RegistrationHandler
from .usage import UsageRegistrationHandler

HANDLER_CLASSES: tuple[type[WorkflowHandler], ...] = (
    RegistrationHandler,
    UsageRegistrationHandler,
    RechargeConfirmation,
    InviteCodeHandler,
    LowBalanceSearchHandler,
    RechargeHistoryHandler,
    UsageHistoryHandler,
)

__all__ = [
    "AccountCommands",
    "HANDLER_CLASSES",
    "InviteCodeHandler",
    "LowBalanceSearchHandler",
    "RechargeConfirmation",
    "RechargeHistoryHandler",
    "RegistrationHandler",
    "UsageHistoryHandler",
    "UsageRegistrationHandler",
    "WorkflowContext",
    "WorkflowHandler",
]
