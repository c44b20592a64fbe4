"""Workload lister backed by the Kubernetes API server."""

from __future__ import annotations

import threading

import structlog
from kubernetes import client as k8s_client

from process_provenance.collectors.kubernetes import load_k8s_api_client, node_name

log = structlog.get_logger()


class ApiServerWorkloadLister:
    """Lists the pods scheduled on this node through the Core V1 API."""

    def __init__(self, kubeconfig: str | None = None, node: str | None = None) -> None:
        self._kubeconfig = kubeconfig
        self._node = node or node_name()
        self._api: k8s_client.CoreV1Api | None = None
        self._lock = threading.Lock()

    @property
    def node(self) -> str:
        return self._node

    def _get_api(self) -> k8s_client.CoreV1Api:
        with self._lock:
            if self._api is None:
                self._api = k8s_client.CoreV1Api(load_k8s_api_client(self._kubeconfig))
            return self._api

    def list_workloads(self) -> list[k8s_client.V1Pod]:
        api = self._get_api()
        try:
            pod_list = api.list_pod_for_all_namespaces(field_selector=f"spec.nodeName={self._node}")
        except Exception:
            log.error("failed_to_list_pods", source="apiserver", node=self._node)
            raise
        return list(pod_list.items or [])
