"""Shared test fixtures for all test modules."""

from __future__ import annotations

import datetime
from collections.abc import Callable
from typing import Any

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat
from cryptography.x509.oid import NameOID
from kubernetes import client as k8s_client

POD_UID = "5831c41b-55ba-4e82-9c6e-2d3ad9d8bfe9"
CONTAINER_ID = "2ce296b740c37b0793e7c95761b32f6a26d8b98b3c0e4e7d5a6032f71520ecad"
IMAGE_ID = (
    "docker.io/rancher/mirrored-metrics-server@sha256:c2dfd72bafd6406ed306d9fbd07f55c496b004293d13d3de88a4567eacc36558"
)


def make_pod(
    uid: str = POD_UID,
    name: str = "metrics-server-648b5df564-drsb2",
    namespace: str = "kube-system",
    node_name: str = "lima-k3s",
    service_account: str = "metrics-server",
    containers: list[tuple[str, str]] | None = None,
    container_statuses: list[tuple[str, str, str]] | None = None,
    init_containers: list[tuple[str, str]] | None = None,
    init_container_statuses: list[tuple[str, str, str]] | None = None,
    ephemeral_containers: list[tuple[str, str]] | None = None,
    ephemeral_container_statuses: list[tuple[str, str, str]] | None = None,
    labels: dict[str, str] | None = None,
    annotations: dict[str, str] | None = None,
    owners: list[tuple[str, str, str]] | None = None,
) -> k8s_client.V1Pod:
    """Build a V1Pod.

    Containers are ``(name, image)``, statuses ``(name, container_id, image_id)`` and owners
    ``(api_version, kind, name)``.
    """
    if containers is None:
        containers = [("metrics-server", "rancher/mirrored-metrics-server:v0.6.3")]
    if container_statuses is None:
        container_statuses = [("metrics-server", f"containerd://{CONTAINER_ID}", IMAGE_ID)]
    if labels is None:
        labels = {"k8s-app": "metrics-server", "pod-template-hash": "648b5df564"}
    if annotations is None:
        annotations = {"kubernetes.io/config.seen": "2023-11-23T16:37:13.953323037Z", "kubernetes.io/config.source": "api"}
    if owners is None:
        owners = [("apps/v1", "ReplicaSet", "metrics-server-648b5df564")]

    def _statuses(entries: list[tuple[str, str, str]] | None) -> list[k8s_client.V1ContainerStatus] | None:
        if entries is None:
            return None
        return [
            k8s_client.V1ContainerStatus(
                name=n, container_id=cid, image_id=iid, image="", ready=True, restart_count=0
            )
            for n, cid, iid in entries
        ]

    return k8s_client.V1Pod(
        metadata=k8s_client.V1ObjectMeta(
            uid=uid,
            name=name,
            namespace=namespace,
            labels=labels,
            annotations=annotations,
            owner_references=[
                k8s_client.V1OwnerReference(api_version=av, kind=kind, name=n, uid=f"owner-{n}")
                for av, kind, n in owners
            ],
        ),
        spec=k8s_client.V1PodSpec(
            node_name=node_name,
            service_account_name=service_account,
            containers=[k8s_client.V1Container(name=n, image=img) for n, img in containers],
            init_containers=[k8s_client.V1Container(name=n, image=img) for n, img in init_containers or []],
            ephemeral_containers=[
                k8s_client.V1EphemeralContainer(name=n, image=img) for n, img in ephemeral_containers or []
            ],
        ),
        status=k8s_client.V1PodStatus(
            container_statuses=_statuses(container_statuses),
            init_container_statuses=_statuses(init_container_statuses),
            ephemeral_container_statuses=_statuses(ephemeral_container_statuses),
        ),
    )


def make_key_pair(common_name: str = "system:kubelet-client") -> tuple[bytes, bytes]:
    """Generate a self-signed certificate and its private key as PEM."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(tz=datetime.UTC)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(key, hashes.SHA256())
    )
    return (
        cert.public_bytes(Encoding.PEM),
        key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()),
    )


@pytest.fixture
def pod_factory() -> Callable[..., k8s_client.V1Pod]:
    """Factory building V1Pod objects; see ``make_pod``."""
    return make_pod


@pytest.fixture
def key_pair_factory() -> Callable[..., tuple[bytes, bytes]]:
    """Factory generating ``(cert_pem, key_pem)`` pairs."""
    return make_key_pair


@pytest.fixture
def identity() -> dict[str, Any]:
    return {"workload_uid": POD_UID, "container_id": CONTAINER_ID, "image_id": IMAGE_ID}


class FakeClock:
    """Monotonic clock whose time only moves when ``sleep`` is awaited."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
