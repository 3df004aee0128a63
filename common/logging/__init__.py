from .context import log_context, get_log_context, new_error_code
from .setup import configure_logging

__all__ = [
    "configure_logging",
    "get_log_context",
    "log_context",
    "new_error_code",
]
