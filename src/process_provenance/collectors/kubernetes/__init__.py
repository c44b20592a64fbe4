"""Kubernetes runtime identity: resolve a process to its pod and container."""

from __future__ import annotations

import os
import socket

from kubernetes import client as k8s_client
from kubernetes.config import ConfigException, load_incluster_config, new_client_from_config


def load_k8s_api_client(kubeconfig: str | None = None) -> k8s_client.ApiClient:
    """Create an isolated Kubernetes API client.

    Uses the given kubeconfig file, otherwise the in-cluster service account, otherwise the
    default kubeconfig. The global SDK configuration is never mutated.
    """
    if kubeconfig:
        return new_client_from_config(config_file=kubeconfig)

    configuration = k8s_client.Configuration()
    try:
        load_incluster_config(client_configuration=configuration)
    except ConfigException:
        return new_client_from_config()
    return k8s_client.ApiClient(configuration)


def node_name() -> str:
    """Return this node's name: ``NODE_NAME`` when set, else the hostname."""
    return os.environ.get("NODE_NAME") or socket.gethostname()
