from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator, Optional
from uuid import uuid4

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
actor_id_var: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)
entry_id_var: ContextVar[Optional[str]] = ContextVar("entry_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[Optional[str]]] = {
    "correlation_id": correlation_id_var,
    "actor_id": actor_id_var,
    "entry_id": entry_id_var,
}


def new_error_code() -> str:
    """Short code quoted to the actor and written to the log for the same failure."""
    return f"E{uuid4().hex[:6].upper()}"


def set_context(**kwargs: Optional[str]) -> dict[str, Token]:
    tokens: dict[str, Token] = {}
    for key, value in kwargs.items():
        var = _CONTEXT_VARS.get(key)
        if var is None:
            continue
        tokens[key] = var.set(None if value is None else str(value))
    return tokens


def reset_context(tokens: dict[str, Token]) -> None:
    for key, token in tokens.items():
        var = _CONTEXT_VARS.get(key)
        if var is not None:
            var.reset(token)


@contextmanager
def log_context(
    correlation_id: Optional[str] = None,
    actor_id: Optional[object] = None,
    entry_id: Optional[object] = None,
) -> Iterator[None]:
    kwargs = {
        "correlation_id": correlation_id,
        "actor_id": actor_id,
        "entry_id": entry_id,
    }
    tokens = set_context(**{key: value for key, value in kwargs.items() if value is not None})
    try:
        yield
    finally:
        reset_context(tokens)


def get_log_context() -> dict[str, str]:
    values = {key: var.get() for key, var in _CONTEXT_VARS.items()}
    return {key: value for key, value in values.items() if value is not None}
