"""Runtime identity resolver: enrich a process with the pod and container it runs in.

Resolution of one PID:

1. extract ``(pod UID, container ID)`` from the process cgroups,
2. match it against the cached workload list,
3. on a miss, force one refresh and match again; keep refreshing under a bounded backoff
   while the pod or a container status is still missing,
4. write pod, container, owner, label, annotation and image facts into the container.
"""

from __future__ import annotations

import asyncio
import enum
import time
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass

import structlog
from kubernetes import client as k8s_client

from process_provenance.collectors.kubernetes.cgroups import CgroupIdentityExtractor, WorkloadIdentity
from process_provenance.collectors.kubernetes.workloads import WorkloadLister, WorkloadListCache
from process_provenance.config import ResolverConfig
from process_provenance.context import pid_from_context
from process_provenance.errors import CgroupReadError, IdentityNotFoundError, ListerError, WorkloadNotFoundError
from process_provenance.labels import LabelContainer, labels_from_mapping

log = structlog.get_logger()

NAME = "kubernetes"

IdentityResolver = Callable[[int], WorkloadIdentity]


@dataclass(frozen=True)
class WorkloadContext:
    """A pod together with the container and container status a process belongs to."""

    workload: k8s_client.V1Pod
    container: k8s_client.V1Container | k8s_client.V1EphemeralContainer
    container_status: k8s_client.V1ContainerStatus


class MatchOutcome(enum.Enum):
    MATCHED = "matched"
    WORKLOAD_MISSING = "pod not found"
    CONTAINER_PENDING = "container status not reported yet"
    CONTAINER_MISSING = "container not found in pod"


@dataclass(frozen=True)
class MatchResult:
    outcome: MatchOutcome
    context: WorkloadContext | None = None

    @property
    def retryable(self) -> bool:
        return self.outcome in (MatchOutcome.WORKLOAD_MISSING, MatchOutcome.CONTAINER_PENDING)


def strip_container_id_scheme(container_id: str) -> str:
    """``containerd://abc`` -> ``abc``."""
    return container_id.split("://", 1)[-1]


def match_workload(workload_uid: str, container_id: str, workloads: list[k8s_client.V1Pod]) -> MatchResult:
    """Find the pod with ``workload_uid`` and its container with ``container_id``.

    Regular, init and ephemeral container statuses are searched in that order; the container
    spec is looked up only within the class whose status matched.

    When the pod reports a status for every container it declares but none matches, the
    result is ``CONTAINER_MISSING``: once a forced refresh has been tried, further refreshes
    are not expected to help.
    """
    pod = next((p for p in workloads if p.metadata is not None and p.metadata.uid == workload_uid), None)
    if pod is None:
        return MatchResult(MatchOutcome.WORKLOAD_MISSING)

    spec = pod.spec or k8s_client.V1PodSpec(containers=[])
    status = pod.status or k8s_client.V1PodStatus()
    classes = (
        (status.container_statuses, spec.containers),
        (status.init_container_statuses, spec.init_containers),
        (status.ephemeral_container_statuses, spec.ephemeral_containers),
    )

    for statuses, containers in classes:
        container_status = next(
            (
                s
                for s in statuses or []
                if s.container_id and strip_container_id_scheme(s.container_id) == container_id
            ),
            None,
        )
        if container_status is None:
            continue
        container = next((c for c in containers or [] if c.name == container_status.name), None)
        if container is not None:
            return MatchResult(
                MatchOutcome.MATCHED,
                WorkloadContext(workload=pod, container=container, container_status=container_status),
            )
        break

    expected = sum(len(containers or []) for _, containers in classes)
    observed = sum(len(statuses or []) for statuses, _ in classes)
    if observed == expected:
        return MatchResult(MatchOutcome.CONTAINER_MISSING)
    return MatchResult(MatchOutcome.CONTAINER_PENDING)


@dataclass(frozen=True)
class Backoff:
    """Exponential backoff bounded by a maximum total elapsed time (seconds)."""

    initial_interval: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 2.0
    max_elapsed: float = 5.0

    def intervals(self) -> Iterator[float]:
        interval = self.initial_interval
        while True:
            yield interval
            interval = min(interval * self.multiplier, self.max_interval)

    @classmethod
    def from_config(cls, config: ResolverConfig) -> Backoff:
        return cls(
            initial_interval=config.retry_initial_interval,
            max_interval=config.retry_max_interval,
            max_elapsed=config.retry_max_elapsed,
        )


def _default_metadata() -> LabelContainer:
    return LabelContainer(prefix=NAME)


class KubernetesCollector:
    """Collector resolving the PID bound in context to its Kubernetes pod and container.

    Args:
        lister: Source of the pods running on this node.
        identity_resolver: Maps a PID to its pod UID and container ID. Defaults to cgroup inspection.
        metadata_factory: Creates the container each call writes into.
        skip_on_soft_error: Return the unenriched container instead of raising when the process
            is not containerized or its pod cannot be matched.
        backoff: Retry policy for matching after a forced refresh.
        clock: Monotonic clock used to bound the retries.
        sleep: Awaitable sleep used between retries.
    """

    def __init__(
        self,
        lister: WorkloadLister,
        *,
        identity_resolver: IdentityResolver | None = None,
        metadata_factory: Callable[[], LabelContainer] | None = None,
        skip_on_soft_error: bool = False,
        backoff: Backoff | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._cache = WorkloadListCache(lister)
        self._identity_resolver = identity_resolver or CgroupIdentityExtractor()
        self._metadata_factory = metadata_factory or _default_metadata
        self._skip_on_soft_error = skip_on_soft_error
        self._backoff = backoff or Backoff()
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(cls, lister: WorkloadLister, config: ResolverConfig) -> KubernetesCollector:
        return cls(
            lister,
            identity_resolver=CgroupIdentityExtractor(config.host_proc),
            skip_on_soft_error=config.skip_on_soft_error,
            backoff=Backoff.from_config(config),
        )

    async def get_metadata(self) -> LabelContainer:
        """Resolve the PID bound in context and return its Kubernetes labels.

        Raises:
            MissingContextError: If no PID is bound.
            IdentityNotFoundError: If the process is not in a pod (unless skipping soft errors).
            CgroupReadError: If the process cgroups cannot be read (unless skipping soft errors).
            WorkloadNotFoundError: If the pod or container cannot be matched (unless skipping soft errors).
            ListerError: If listing pods fails.
        """
        md = self._metadata_factory()
        pid = pid_from_context()

        try:
            identity = await asyncio.to_thread(self._identity_resolver, pid)
        except IdentityNotFoundError as err:
            if self._skip_on_soft_error:
                log.debug("process_not_in_pod", pid=pid, container_id=err.container_id)
                return md
            raise
        except OSError as err:
            if self._skip_on_soft_error:
                log.warning("cgroups_unreadable", pid=pid, error=str(err))
                return md
            raise CgroupReadError(f"could not get cgroups for pid {pid}: {err}") from err

        if not identity.workload_uid or not identity.container_id:
            return md

        try:
            workload_ctx = await self._resolve(pid, identity)
        except WorkloadNotFoundError as err:
            if self._skip_on_soft_error:
                log.warning("workload_not_found", pid=pid, error=str(err))
                return md
            raise

        for populate in _POPULATORS:
            populate(workload_ctx, md)

        log.debug(
            "workload_resolved",
            pid=pid,
            pod=workload_ctx.workload.metadata.name,
            container=workload_ctx.container.name,
        )
        return md

    async def _workloads(self, pid: int, skip_cache: bool) -> list[k8s_client.V1Pod]:
        try:
            return await asyncio.to_thread(self._cache.get_workloads, skip_cache)
        except ListerError as err:
            raise ListerError(f"could not get pods for pid {pid}: {err}") from err

    async def _resolve(self, pid: int, identity: WorkloadIdentity) -> WorkloadContext:
        workloads = await self._workloads(pid, False)
        result = match_workload(identity.workload_uid, identity.container_id, workloads)
        if result.context is not None:
            return result.context

        start = self._clock()
        intervals = self._backoff.intervals()
        attempt = 0
        # the first miss always forces one refresh; only retryable outcomes back off after it
        while True:
            attempt += 1
            log.info(
                "workload_cache_miss",
                pid=pid,
                workload_uid=identity.workload_uid,
                container_id=identity.container_id,
                outcome=result.outcome.value,
                attempt=attempt,
            )
            workloads = await self._workloads(pid, True)
            result = match_workload(identity.workload_uid, identity.container_id, workloads)
            if result.context is not None:
                return result.context
            if not result.retryable:
                break

            interval = next(intervals)
            if self._clock() - start + interval > self._backoff.max_elapsed:
                miss = WorkloadNotFoundError(pid, identity.workload_uid, identity.container_id, result.outcome.value)
                raise WorkloadNotFoundError(
                    pid,
                    identity.workload_uid,
                    identity.container_id,
                    f"not found after timeout ({self._backoff.max_elapsed}s, {attempt} refreshes)",
                ) from miss
            await self._sleep(interval)

        raise WorkloadNotFoundError(pid, identity.workload_uid, identity.container_id, result.outcome.value)


def _pod(ctx: WorkloadContext, md: LabelContainer) -> None:
    pod = ctx.workload
    spec = pod.spec

    pmd = md.segment("pod")
    pmd.add_label("name", pod.metadata.name).add_label("namespace", pod.metadata.namespace).add_label(
        "serviceaccount", spec.service_account_name if spec else None
    )

    omd = pmd.segment("owner")
    for owner in pod.metadata.owner_references or []:
        kind = (owner.kind or "").lower()
        omd.add_label("kind", kind).add_label(
            "kind-with-version", f"{(owner.api_version or '').lower()}/{kind}"
        ).add_label("name", owner.name)

    md.segment("node").add_label("name", spec.node_name if spec else None)


def _container(ctx: WorkloadContext, md: LabelContainer) -> None:
    cmd = md.segment("container")
    cmd.add_label("name", ctx.container.name)
    cmd.segment("image").add_label("id", ctx.container_status.image_id)


def _labels(ctx: WorkloadContext, md: LabelContainer) -> None:
    md.segment("label").add_labels(labels_from_mapping(ctx.workload.metadata.labels))


def _annotations(ctx: WorkloadContext, md: LabelContainer) -> None:
    md.segment("annotation").add_labels(labels_from_mapping(ctx.workload.metadata.annotations))


def _images(ctx: WorkloadContext, md: LabelContainer) -> None:
    pod = ctx.workload
    spec = pod.spec or k8s_client.V1PodSpec(containers=[])
    status = pod.status or k8s_client.V1PodStatus()
    pmd = md.segment("pod")

    imd = pmd.segment("image")
    for cs in status.container_statuses or []:
        imd.add_label("id", cs.image_id)

    for segment, containers in (
        (imd, spec.containers),
        (pmd.segment("init-image"), spec.init_containers),
        (pmd.segment("ephemeral-image"), spec.ephemeral_containers),
    ):
        containers = containers or []
        for container in containers:
            segment.add_label("name", container.image)
        segment.add_label("count", str(len(containers)))


_POPULATORS: tuple[Callable[[WorkloadContext, LabelContainer], None], ...] = (
    _pod,
    _container,
    _labels,
    _annotations,
    _images,
)
