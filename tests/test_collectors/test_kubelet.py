"""Tests for the kubelet workload lister."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from process_provenance.collectors.kubernetes.kubelet import KUBELET_PORT, KubeletWorkloadLister
from process_provenance.config import KubeletConfig
from process_provenance.errors import CacheReadError, ListerError

POD_LIST = {
    "kind": "PodList",
    "apiVersion": "v1",
    "items": [
        {
            "metadata": {"name": "web-0", "namespace": "default", "uid": "5831c41b-55ba-4e82-9c6e-2d3ad9d8bfe9"},
            "spec": {"nodeName": "node-1", "containers": [{"name": "web", "image": "nginx:1.25"}]},
            "status": {
                "containerStatuses": [
                    {
                        "name": "web",
                        "containerID": "containerd://abc",
                        "image": "nginx:1.25",
                        "imageID": "docker.io/library/nginx@sha256:def",
                        "ready": True,
                        "restartCount": 0,
                    }
                ]
            },
        }
    ],
}


def _transport(requests: list[httpx.Request], status_code: int = 200, body: object = POD_LIST) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, text=json.dumps(body) if not isinstance(body, str) else body)

    return httpx.MockTransport(handler)


class TestConstruction:
    def test_cert_without_key(self) -> None:
        with pytest.raises(ValueError, match="missing client certificate private key path"):
            KubeletWorkloadLister(cert_file="/tmp/cert.pem")

    def test_key_without_cert(self) -> None:
        with pytest.raises(ValueError, match="missing client certificate path"):
            KubeletWorkloadLister(key_file="/tmp/key.pem")

    def test_default_address_uses_kubelet_port(self) -> None:
        assert KubeletWorkloadLister().address.endswith(f":{KUBELET_PORT}")

    def test_from_config(self) -> None:
        config = KubeletConfig(address="10.0.0.5:10250", token_file="", ca_file="", cert_file="", key_file="")
        assert KubeletWorkloadLister.from_config(config).address == "10.0.0.5:10250"


class TestListWorkloads:
    def test_lists_pods(self) -> None:
        requests: list[httpx.Request] = []
        lister = KubeletWorkloadLister(
            address="node-1:10250", token="secret", skip_cert_verify=True, transport=_transport(requests)
        )

        pods = lister.list_workloads()

        assert len(pods) == 1
        pod = pods[0]
        assert pod.metadata.name == "web-0"
        assert pod.spec.containers[0].image == "nginx:1.25"
        assert pod.status.container_statuses[0].container_id == "containerd://abc"
        assert str(requests[0].url) == "https://node-1:10250/pods"
        assert requests[0].headers["Authorization"] == "Bearer secret"

    def test_no_token_no_header(self) -> None:
        requests: list[httpx.Request] = []
        lister = KubeletWorkloadLister(address="node-1:10250", skip_cert_verify=True, transport=_transport(requests))

        lister.list_workloads()

        assert "Authorization" not in requests[0].headers

    def test_token_read_from_file(self, tmp_path: Path) -> None:
        token_file = tmp_path / "token"
        token_file.write_text("from-file\n")
        requests: list[httpx.Request] = []
        lister = KubeletWorkloadLister(
            address="node-1:10250", token_file=str(token_file), skip_cert_verify=True, transport=_transport(requests)
        )

        lister.list_workloads()

        assert requests[0].headers["Authorization"] == "Bearer from-file"

    def test_error_status(self) -> None:
        lister = KubeletWorkloadLister(
            address="node-1:10250", skip_cert_verify=True, transport=_transport([], status_code=401, body="Unauthorized")
        )

        with pytest.raises(ListerError, match="node-1:10250"):
            lister.list_workloads()

    def test_invalid_body(self) -> None:
        lister = KubeletWorkloadLister(
            address="node-1:10250", skip_cert_verify=True, transport=_transport([], body="not json")
        )

        with pytest.raises(ListerError, match="could not unmarshal kubelet response"):
            lister.list_workloads()

    def test_missing_token_file(self, tmp_path: Path) -> None:
        with pytest.raises(CacheReadError):
            KubeletWorkloadLister(address="node-1:10250", token_file=str(tmp_path / "absent"))


class TestClientCertificate:
    def _write_pair(self, directory: Path, pair: tuple[bytes, bytes]) -> tuple[Path, Path]:
        cert_file, key_file = directory / "client.crt", directory / "client.key"
        cert_file.write_bytes(pair[0])
        key_file.write_bytes(pair[1])
        return cert_file, key_file

    def test_client_reused_while_certificate_unchanged(self, tmp_path: Path, key_pair_factory) -> None:
        cert_file, key_file = self._write_pair(tmp_path, key_pair_factory())
        lister = KubeletWorkloadLister(
            address="node-1:10250",
            cert_file=str(cert_file),
            key_file=str(key_file),
            skip_cert_verify=True,
            file_ttl=0,
            transport=_transport([]),
        )

        lister.list_workloads()
        first = lister._client
        lister.list_workloads()

        assert lister._client is first

    def test_client_rebuilt_after_rotation(self, tmp_path: Path, key_pair_factory) -> None:
        cert_file, key_file = self._write_pair(tmp_path, key_pair_factory("before"))
        lister = KubeletWorkloadLister(
            address="node-1:10250",
            cert_file=str(cert_file),
            key_file=str(key_file),
            skip_cert_verify=True,
            file_ttl=0,
            transport=_transport([]),
        )

        lister.list_workloads()
        first = lister._client
        self._write_pair(tmp_path, key_pair_factory("after"))
        lister.list_workloads()

        assert lister._client is not first

    def test_close(self) -> None:
        lister = KubeletWorkloadLister(address="node-1:10250", skip_cert_verify=True, transport=_transport([]))
        lister.list_workloads()
        lister.close()
        assert lister._client is None
