"""Workload listing capability and the shared workload list snapshot."""

from __future__ import annotations

from typing import Protocol

import structlog
from kubernetes import client as k8s_client

from process_provenance.errors import ListerError
from process_provenance.utils import ReadWriteLock

log = structlog.get_logger()


class WorkloadLister(Protocol):
    """Lists the pods running on this node."""

    def list_workloads(self) -> list[k8s_client.V1Pod]: ...


class WorkloadListCache:
    """Lazily populated snapshot of the workload list.

    Readers share the current snapshot without blocking each other. A refresh replaces the
    whole snapshot under the write lock, so every reader sees a consistent list.
    """

    def __init__(self, lister: WorkloadLister) -> None:
        self._lister = lister
        self._snapshot: list[k8s_client.V1Pod] | None = None
        self._lock = ReadWriteLock()

    def get_workloads(self, skip_cache: bool = False) -> list[k8s_client.V1Pod]:
        """Return the cached snapshot, listing afresh if it is empty or ``skip_cache`` is set.

        Raises:
            ListerError: If the listing fails.
        """
        if not skip_cache:
            with self._lock.read():
                if self._snapshot:
                    return self._snapshot

        with self._lock.write():
            # another caller may have populated the snapshot while we waited
            if not skip_cache and self._snapshot:
                return self._snapshot
            try:
                workloads = self._lister.list_workloads()
            except Exception as err:
                log.error("failed_to_list_workloads", lister=type(self._lister).__name__, error=str(err))
                raise ListerError(f"could not get pods: {err}") from err
            self._snapshot = list(workloads)
            log.debug("workload_list_refreshed", count=len(self._snapshot), forced=skip_cache)
            return self._snapshot
