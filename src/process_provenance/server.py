"""MCP server entry point exposing process provenance lookups."""

from __future__ import annotations

import os
import sys
import threading
import time

import structlog
from mcp.server.fastmcp import FastMCP

from process_provenance.collection import CollectorCollection
from process_provenance.collectors.kubernetes import autoconfig
from process_provenance.collectors.kubernetes.apiserver import ApiServerWorkloadLister
from process_provenance.collectors.kubernetes.kubelet import KubeletWorkloadLister
from process_provenance.collectors.kubernetes.resolver import KubernetesCollector
from process_provenance.collectors.kubernetes.workloads import WorkloadLister
from process_provenance.collectors.static import StaticCollector
from process_provenance.config import get_kubelet_config, get_resolver_config, static_labels_path
from process_provenance.context import pid_context
from process_provenance.errors import AutoConfigurationError
from process_provenance.models import ProcessMetadataOutput
from process_provenance.validation import validate_pid

# Configure structlog for JSON output to stderr
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
    ],
    logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
)

log = structlog.get_logger()

mcp = FastMCP("Process Provenance")


def _workload_lister(file_ttl: float) -> WorkloadLister | None:
    kubelet_config = get_kubelet_config()
    if kubelet_config.configured:
        return KubeletWorkloadLister.from_config(kubelet_config, file_ttl=file_ttl)
    if os.environ.get("KUBERNETES_SERVICE_HOST"):
        return ApiServerWorkloadLister()
    try:
        return autoconfig.workload_lister(file_ttl=file_ttl)
    except AutoConfigurationError:
        log.warning("kubernetes_collector_disabled", reason="no workload source available")
        return None


def build_collection() -> CollectorCollection:
    """Assemble the collectors enabled by the environment."""
    config = get_resolver_config()
    collection = CollectorCollection()

    path = static_labels_path()
    if path is not None:
        collection.add(StaticCollector.from_file(path))

    lister = _workload_lister(config.file_cache_ttl)
    if lister is not None:
        collection.add(KubernetesCollector.from_config(lister, config))

    log.info("collectors_configured", count=len(collection))
    return collection


class _LazyCollection:
    """Builds the collector collection on first use, exactly once."""

    def __init__(self) -> None:
        self._collection: CollectorCollection | None = None
        self._lock = threading.Lock()

    def get(self) -> CollectorCollection:
        with self._lock:
            if self._collection is None:
                self._collection = build_collection()
            return self._collection


_collection = _LazyCollection()


@mcp.tool()
async def get_process_metadata(pid: int) -> str:
    """Get provenance metadata for a process running on this node.

    Returns sorted name/value labels describing the Kubernetes pod, container, owner,
    node, pod labels, annotations and images the process belongs to, plus any static
    labels configured for this host. Collector failures are reported per collector
    alongside whatever metadata could still be collected.

    Args:
        pid: Process ID as seen from this host's PID namespace.
    """
    start = time.monotonic()
    try:
        validate_pid(pid)
        with pid_context(pid):
            result = await _collection.get().collect()
        output = ProcessMetadataOutput.from_result(pid, result)
        log.info(
            "tool_completed",
            tool="get_process_metadata",
            pid=pid,
            labels=len(output.labels),
            errors=len(output.errors),
            latency_ms=_elapsed_ms(start),
        )
        return output.model_dump_json(indent=2)
    except Exception as e:
        log.error("tool_failed", tool="get_process_metadata", pid=pid, error=str(e))
        raise RuntimeError(str(e)) from None


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def main() -> None:
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
