"""Cgroup inspection: map a process to its pod UID and container ID."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from pathlib import Path

import structlog

from process_provenance.errors import IdentityNotFoundError

log = structlog.get_logger()

# Optional leading path, optional "/pod" or "-pod" marker, a 36 character pod UID (systemd
# cgroup drivers write its hyphens as underscores), then eventually a 64 character container ID.
_POD_CONTAINER_RE = re.compile(r"([a-z0-9/.-]+)?([/-]pod)?([a-zA-Z0-9_-]{36}).*([a-zA-Z0-9]{64})")

_CONTAINER_ID_RE = re.compile(r"\b([a-zA-Z0-9]{64})")


@dataclass(frozen=True)
class Cgroup:
    """One line of ``/proc/<pid>/cgroup``."""

    hierarchy_id: int
    controllers: list[str]
    path: str


@dataclass(frozen=True)
class WorkloadIdentity:
    """The pod UID and container ID a process runs in."""

    workload_uid: str
    container_id: str


def proc_root(host_proc: str | None = None) -> Path:
    """Return the procfs mount point, honouring ``HOST_PROC`` when set."""
    if host_proc is None:
        host_proc = os.environ.get("HOST_PROC", "")
    return Path(host_proc or "/proc")


def parse_cgroup_line(line: str) -> Cgroup | None:
    """Parse an ``id:controllers:path`` line; return None for malformed lines."""
    parts = line.strip().split(":", 2)
    if len(parts) != 3:
        return None
    hierarchy, controllers, path = parts
    try:
        hierarchy_id = int(hierarchy)
    except ValueError:
        return None
    return Cgroup(
        hierarchy_id=hierarchy_id,
        controllers=[c for c in controllers.split(",") if c],
        path=path,
    )


def read_cgroups(pid: int, host_proc: str | None = None) -> list[Cgroup]:
    """Read the cgroup membership of ``pid`` in file order.

    Raises:
        OSError: If the process does not exist or its cgroup file is not readable.
    """
    path = proc_root(host_proc) / str(pid) / "cgroup"
    cgroups: list[Cgroup] = []
    for line in path.read_text().splitlines():
        cgroup = parse_cgroup_line(line)
        if cgroup is not None:
            cgroups.append(cgroup)
    return cgroups


def extract_workload_identity(paths: list[str]) -> WorkloadIdentity | None:
    """Return the identity encoded in the first matching cgroup path, if any."""
    for path in paths:
        match = _POD_CONTAINER_RE.search(path)
        if match and len(match.group(3)) == 36 and len(match.group(4)) == 64:
            return WorkloadIdentity(workload_uid=match.group(3).replace("_", "-"), container_id=match.group(4))
    return None


def container_id_from_cgroups(paths: list[str]) -> str:
    """Return the first plain 64 character container ID found in ``paths``, or ``""``."""
    for path in paths:
        match = _CONTAINER_ID_RE.search(path)
        if match:
            return match.group(1)
    return ""


class CgroupIdentityExtractor:
    """Resolves a PID to its ``WorkloadIdentity`` by inspecting its cgroups."""

    def __init__(self, host_proc: str | None = None) -> None:
        self._host_proc = host_proc

    def __call__(self, pid: int) -> WorkloadIdentity:
        """Raises ``OSError`` when cgroups are unreadable, ``IdentityNotFoundError`` on no match."""
        try:
            cgroups = read_cgroups(pid, self._host_proc)
        except OSError:
            log.error("failed_to_read_cgroups", pid=pid)
            raise

        paths = [c.path for c in cgroups]
        identity = extract_workload_identity(paths)
        if identity is None:
            container_id = container_id_from_cgroups(paths)
            if container_id:
                log.debug("container_outside_pod", pid=pid, container_id=container_id)
            raise IdentityNotFoundError(pid, container_id)
        return identity
