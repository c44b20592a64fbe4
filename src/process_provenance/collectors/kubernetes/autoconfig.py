"""Pick a workload lister from the credentials well-known distributions leave on the node."""

from __future__ import annotations

import enum
import os
import socket
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

import structlog
import yaml

from process_provenance.collectors.kubernetes.apiserver import ApiServerWorkloadLister
from process_provenance.collectors.kubernetes.kubelet import KubeletWorkloadLister
from process_provenance.collectors.kubernetes.workloads import WorkloadLister
from process_provenance.errors import AutoConfigurationError

log = structlog.get_logger()


class SourceType(enum.StrEnum):
    KUBELET = "kubelet"
    APISERVER = "apiserver"


class Provider(enum.StrEnum):
    K3S = "k3s"
    KIND = "kind"
    MICROK8S = "microk8s"
    GKE = "gke"
    EKS = "eks"


@dataclass(frozen=True)
class SourceConfig:
    """Where one distribution keeps the credentials for one kind of workload source."""

    provider: Provider
    source_type: SourceType
    kubelet_config_file: str = ""
    kubeconfig_file: str = ""
    ca_cert_file: str = ""
    cert_file: str = ""
    key_file: str = ""

    def available(self, exists: Callable[[str], bool] = os.path.exists) -> bool:
        if self.source_type is SourceType.APISERVER:
            return _every_file_exists(exists, self.kubeconfig_file)
        return _every_file_exists(exists, self.ca_cert_file, self.cert_file, self.key_file)


KNOWN_SOURCES: tuple[SourceConfig, ...] = (
    SourceConfig(
        provider=Provider.MICROK8S,
        source_type=SourceType.KUBELET,
        ca_cert_file="/var/snap/microk8s/current/certs/kubelet.crt",
        cert_file="/var/snap/microk8s/current/certs/apiserver-kubelet-client.crt",
        key_file="/var/snap/microk8s/current/certs/apiserver-kubelet-client.key",
    ),
    SourceConfig(
        provider=Provider.MICROK8S,
        source_type=SourceType.APISERVER,
        kubeconfig_file="/var/snap/microk8s/current/credentials/kubelet.config",
    ),
    SourceConfig(
        provider=Provider.K3S,
        source_type=SourceType.KUBELET,
        kubelet_config_file="/var/lib/rancher/k3s/agent/etc/kubelet.conf.d/00-k3s-defaults.conf",
        ca_cert_file="/var/lib/rancher/k3s/agent/serving-kubelet.crt",
        cert_file="/var/lib/rancher/k3s/agent/client-kubelet.crt",
        key_file="/var/lib/rancher/k3s/agent/client-kubelet.key",
    ),
    SourceConfig(
        provider=Provider.K3S,
        source_type=SourceType.APISERVER,
        kubeconfig_file="/var/lib/rancher/k3s/agent/kubelet.kubeconfig",
    ),
    SourceConfig(
        provider=Provider.KIND,
        source_type=SourceType.KUBELET,
        kubelet_config_file="/var/lib/kubelet/config.yaml",
        ca_cert_file="/var/lib/kubelet/pki/kubelet.crt",
        cert_file="/etc/kubernetes/pki/apiserver-kubelet-client.crt",
        key_file="/etc/kubernetes/pki/apiserver-kubelet-client.key",
    ),
    SourceConfig(
        provider=Provider.GKE,
        source_type=SourceType.KUBELET,
        kubelet_config_file="/home/kubernetes/kubelet-config.yaml",
        ca_cert_file="/etc/srv/kubernetes/pki/ca-certificates.crt",
        cert_file="/var/lib/kubelet/pki/kubelet-client.crt",
        key_file="/var/lib/kubelet/pki/kubelet-client.key",
    ),
    SourceConfig(
        provider=Provider.EKS,
        source_type=SourceType.APISERVER,
        kubeconfig_file="/var/lib/kubelet/kubeconfig",
    ),
)


def select_source(
    sources: Sequence[SourceConfig] = KNOWN_SOURCES,
    exists: Callable[[str], bool] = os.path.exists,
) -> SourceConfig:
    """Return the first source whose credential files are all present.

    Raises:
        AutoConfigurationError: If none is available.
    """
    for source in sources:
        if source.available(exists):
            return source
    raise AutoConfigurationError("auto configuration failed: no known kubelet or kubeconfig credentials found")


def workload_lister(
    sources: Sequence[SourceConfig] = KNOWN_SOURCES,
    exists: Callable[[str], bool] = os.path.exists,
    file_ttl: float = 5.0,
) -> WorkloadLister:
    """Build the workload lister for the first available known source."""
    source = select_source(sources, exists)
    log.info("workload_source_selected", provider=source.provider.value, source_type=source.source_type.value)

    if source.source_type is SourceType.APISERVER:
        return ApiServerWorkloadLister(kubeconfig=source.kubeconfig_file)
    return KubeletWorkloadLister(
        address=kubelet_address(source.kubelet_config_file),
        ca_file=source.ca_cert_file,
        cert_file=source.cert_file,
        key_file=source.key_file,
        file_ttl=file_ttl,
    )


def kubelet_address(config_file: str, host: str | None = None) -> str | None:
    """Return ``<host>:<port>`` from the ``port`` of a KubeletConfiguration file.

    None when no file is given or it names no port, so the lister default applies.
    """
    if not config_file:
        return None
    try:
        raw = yaml.safe_load(Path(config_file).read_text())
    except (OSError, yaml.YAMLError) as err:
        log.warning("kubelet_config_unreadable", path=config_file, error=str(err))
        return None

    port = raw.get("port") if isinstance(raw, dict) else None
    if isinstance(port, bool) or not isinstance(port, int):
        return None
    return f"{host or socket.gethostname()}:{port}"


def _every_file_exists(exists: Callable[[str], bool], *paths: str) -> bool:
    return all(path and exists(path) for path in paths)
