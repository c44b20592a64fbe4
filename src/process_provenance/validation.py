"""Input validation helpers for MCP tool parameters."""

from __future__ import annotations

# Linux caps pid_max at 2^22.
_MAX_PID = 4_194_304


def validate_pid(pid: int) -> None:
    """Validate a process ID."""
    if isinstance(pid, bool) or not isinstance(pid, int):
        msg = f"Invalid pid: {pid!r}. Must be an integer."
        raise ValueError(msg)
    if pid <= 0 or pid > _MAX_PID:
        msg = f"Invalid pid: {pid!r}. Must be between 1 and {_MAX_PID}."
        raise ValueError(msg)
