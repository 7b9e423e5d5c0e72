"""Request context tracking with contextvars.

Values set here are merged into every log event by the structlog
processor chain, so code deep in the progress engine never has to pass
request or learner identifiers around just for logging.
"""

from contextvars import ContextVar, Token
from typing import Any
from uuid import UUID, uuid4


request_id_var: ContextVar[str] = ContextVar("request_id", default="")
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
module_id_var: ContextVar[str | None] = ContextVar("module_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar] = {
    "request_id": request_id_var,
    "trace_id": trace_id_var,
    "user_id": user_id_var,
    "module_id": module_id_var,
}


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


def set_request_id(request_id: str | None = None) -> str:
    """Set the request ID, generating one when none is supplied."""
    rid = request_id or str(uuid4())
    request_id_var.set(rid)
    return rid


def set_trace_id(trace_id: str | None) -> None:
    trace_id_var.set(trace_id)


def get_user_id() -> str | None:
    return user_id_var.get()


def set_user_id(user_id: str | UUID | None) -> None:
    user_id_var.set(str(user_id) if user_id is not None else None)


def get_context() -> dict[str, Any]:
    """Return the non-empty context values as a dictionary."""
    return {name: var.get() for name, var in _CONTEXT_VARS.items() if var.get()}


def clear_context() -> None:
    """Reset every context variable at the end of a request."""
    request_id_var.set("")
    for name, var in _CONTEXT_VARS.items():
        if name != "request_id":
            var.set(None)


class LearnerContext:
    """Bind a learner and module to the current context for a block of work.

    Usage:
        with LearnerContext(user_id, module_id):
            logger.info("step_progress_updated")  # carries user_id/module_id
    """

    def __init__(self, user_id: str | UUID, module_id: str | None = None) -> None:
        self.user_id = str(user_id)
        self.module_id = module_id
        self._tokens: list[tuple[ContextVar, Token]] = []

    def __enter__(self) -> "LearnerContext":
        self._tokens.append((user_id_var, user_id_var.set(self.user_id)))
        if self.module_id is not None:
            self._tokens.append((module_id_var, module_id_var.set(self.module_id)))
        return self

    def __exit__(self, *_: object) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
