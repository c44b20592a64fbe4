"""Error taxonomy for metadata collection and runtime identity resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from process_provenance.labels import LabelContainer


class ProvenanceError(Exception):
    """Base class for all errors raised by this package."""


class MissingContextError(ProvenanceError):
    """The target PID was not bound in the request context."""

    def __init__(self, message: str = "pid is not found in context") -> None:
        super().__init__(message)


class IdentityNotFoundError(ProvenanceError):
    """No cgroup path of the process carries a workload UID and container ID.

    ``container_id`` is set when the process runs in a plain (non-pod) container.
    """

    def __init__(self, pid: int, container_id: str = "") -> None:
        self.pid = pid
        self.container_id = container_id
        super().__init__(f"could not find pod or container id for pid {pid}")


class CgroupReadError(ProvenanceError):
    """The cgroup membership of a process could not be read."""


class WorkloadNotFoundError(ProvenanceError):
    """The workload or container could not be matched in the workload list."""

    def __init__(self, pid: int, workload_uid: str, container_id: str, reason: str = "not found") -> None:
        self.pid = pid
        self.workload_uid = workload_uid
        self.container_id = container_id
        self.reason = reason
        super().__init__(f"pod {workload_uid} container {container_id} for pid {pid}: {reason}")


class ListerError(ProvenanceError):
    """The upstream workload listing failed."""


class CacheReadError(ProvenanceError):
    """A cached file could not be read."""


class CacheParseError(ProvenanceError):
    """Cached file content could not be parsed (e.g. malformed PEM)."""


class AutoConfigurationError(ProvenanceError):
    """No known workload source is available on this node."""


class MetadataCollectionError(ExceptionGroup):
    """One or more collectors failed; ``metadata`` holds everything that was collected."""

    def __new__(
        cls,
        message: str,
        exceptions: list[Exception],
        metadata: LabelContainer | None = None,
    ) -> MetadataCollectionError:
        obj = super().__new__(cls, message, exceptions)
        obj.metadata = metadata
        return obj

    def __init__(
        self,
        message: str,
        exceptions: list[Exception],
        metadata: LabelContainer | None = None,
    ) -> None:
        super().__init__(message, exceptions)

    def derive(self, excs: list[Exception]) -> MetadataCollectionError:
        return MetadataCollectionError(self.message, excs, self.metadata)
