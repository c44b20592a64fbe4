"""Request-scoped propagation of the target process ID."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar

import structlog

from process_provenance.errors import MissingContextError

_pid_var: ContextVar[int | None] = ContextVar("process_pid", default=None)


@contextmanager
def pid_context(pid: int) -> Iterator[int]:
    """Bind ``pid`` as the target process for the enclosed block.

    asyncio tasks created inside the block inherit the binding. The PID is also bound into
    structlog's context variables so every log line emitted while collecting carries it.
    """
    token = _pid_var.set(pid)
    with structlog.contextvars.bound_contextvars(pid=pid):
        try:
            yield pid
        finally:
            _pid_var.reset(token)


def pid_from_context() -> int:
    """Return the PID bound by ``pid_context``.

    Raises:
        MissingContextError: If no PID is bound.
    """
    pid = _pid_var.get()
    if pid is None:
        raise MissingContextError
    return pid
