"""Workload lister talking directly to the node-local kubelet over (mutual) TLS."""

from __future__ import annotations

import socket
import ssl
import threading
from dataclasses import dataclass

import httpx
import structlog
from kubernetes import client as k8s_client

from process_provenance.collectors.kubernetes.cache import CachedCertificate, CachedFile, ClientCertificate
from process_provenance.config import KubeletConfig
from process_provenance.errors import ListerError

log = structlog.get_logger()

KUBELET_PORT = 10250
DEFAULT_ADDRESS = f"127.0.0.1:{KUBELET_PORT}"


def default_address() -> str:
    try:
        return f"{socket.gethostname()}:{KUBELET_PORT}"
    except OSError:
        return DEFAULT_ADDRESS


@dataclass(frozen=True)
class _RawResponse:
    """Adapter exposing a response body the way ``ApiClient.deserialize`` expects."""

    data: str


class KubeletWorkloadLister:
    """Lists pods from ``GET https://<address>/pods`` on the kubelet.

    The client certificate and CA bundle are re-read from disk through ``CachedFile`` so
    rotated credentials are picked up; the HTTP client is rebuilt only when the CA content
    or the certificate object changes.

    Raises:
        ValueError: If only one half of the client certificate/key pair is configured.
        CacheReadError: If a configured credential file cannot be read.
    """

    def __init__(
        self,
        *,
        address: str | None = None,
        token: str | None = None,
        token_file: str | None = None,
        ca_pem: bytes | None = None,
        ca_file: str | None = None,
        cert_file: str | None = None,
        key_file: str | None = None,
        skip_cert_verify: bool = False,
        file_ttl: float = 5.0,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if cert_file and not key_file:
            raise ValueError("missing client certificate private key path")
        if key_file and not cert_file:
            raise ValueError("missing client certificate path")

        self._address = address or default_address()
        self._token = token
        self._token_file = CachedFile(token_file, file_ttl) if token_file else None
        self._ca_pem = ca_pem
        self._ca_file = CachedFile(ca_file, file_ttl) if ca_file else None
        self._certificate = (
            CachedCertificate(CachedFile(cert_file, file_ttl), CachedFile(key_file, file_ttl))
            if cert_file and key_file
            else None
        )
        self._skip_cert_verify = skip_cert_verify
        self._timeout = timeout
        self._transport = transport

        self._client: httpx.Client | None = None
        self._active_cert: ClientCertificate | None = None
        self._api_client: k8s_client.ApiClient | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: KubeletConfig, file_ttl: float = 5.0) -> KubeletWorkloadLister:
        return cls(
            address=config.address or None,
            token_file=config.token_file or None,
            ca_file=config.ca_file or None,
            cert_file=config.cert_file or None,
            key_file=config.key_file or None,
            skip_cert_verify=config.skip_cert_verify,
            file_ttl=file_ttl,
        )

    @property
    def address(self) -> str:
        return self._address

    def list_workloads(self) -> list[k8s_client.V1Pod]:
        client = self._get_client()
        headers = {}
        token = self._bearer_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = client.get("/pods", headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as err:
            log.error("failed_to_list_pods", source="kubelet", address=self._address, error=str(err))
            raise ListerError(f"could not list pods from kubelet {self._address}: {err}") from err

        try:
            pod_list = self._get_api_client().deserialize(_RawResponse(response.text), "V1PodList")
        except (ValueError, TypeError) as err:
            raise ListerError(f"could not unmarshal kubelet response: {err}") from err
        return list(pod_list.items or [])

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _bearer_token(self) -> str | None:
        if self._token_file is not None:
            content, _ = self._token_file.content()
            return content.decode().strip() or None
        return self._token

    def _get_api_client(self) -> k8s_client.ApiClient:
        if self._api_client is None:
            self._api_client = k8s_client.ApiClient()
        return self._api_client

    def _get_client(self) -> httpx.Client:
        with self._lock:
            ca_pem = self._ca_pem
            ca_changed = False
            if self._ca_file is not None:
                ca_pem, ca_changed = self._ca_file.content()
                self._ca_pem = ca_pem

            cert = self._certificate.certificate() if self._certificate is not None else None

            if self._client is None or ca_changed or cert is not self._active_cert:
                if self._client is not None:
                    log.info("kubelet_tls_reloaded", address=self._address, ca_changed=ca_changed)
                    self._client.close()
                self._client = httpx.Client(
                    base_url=f"https://{self._address}",
                    verify=self._ssl_context(ca_pem, cert),
                    timeout=self._timeout,
                    transport=self._transport,
                )
                self._active_cert = cert
            return self._client

    def _ssl_context(self, ca_pem: bytes | None, cert: ClientCertificate | None) -> ssl.SSLContext:
        if self._skip_cert_verify:
            context = ssl.create_default_context()
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        elif ca_pem:
            context = ssl.create_default_context(cadata=ca_pem.decode())
        else:
            context = ssl.create_default_context()

        if cert is not None:
            cert.load_into(context)
        return context
