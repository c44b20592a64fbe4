"""TTL-bounded file content cache and the client certificate derived from it."""

from __future__ import annotations

import ssl
import tempfile
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import structlog
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat, load_pem_private_key

from process_provenance.errors import CacheParseError, CacheReadError
from process_provenance.utils import ReadWriteLock

log = structlog.get_logger()


class ContentSource(Protocol):
    def content(self) -> tuple[bytes, bool]: ...


class CachedFile:
    """Caches a file's bytes for ``ttl`` seconds and reports whether they changed.

    The constructor reads the file once so a missing or unreadable file fails early; that
    content is discarded, so the first ``content()`` call always reports ``changed=True``.
    """

    def __init__(self, path: str | Path, ttl: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._path = Path(path)
        self._ttl = ttl
        self._clock = clock
        self._content: bytes | None = None
        self._read_at = 0.0
        self._lock = ReadWriteLock()

        self.content()
        self._content = None

    @property
    def path(self) -> Path:
        return self._path

    def content(self) -> tuple[bytes, bool]:
        """Return ``(content, changed)``.

        Within the TTL the cached bytes are returned with ``changed=False``. Past the TTL the
        file is re-read and ``changed`` is true only if the bytes differ from the previous read.

        Raises:
            CacheReadError: If the file cannot be read.
        """
        with self._lock.read():
            if self._content is not None and self._clock() - self._read_at < self._ttl:
                return self._content, False
            previous = self._content

        try:
            data = self._path.read_bytes()
        except OSError as err:
            log.error("cached_file_read_failed", path=str(self._path), error=str(err))
            raise CacheReadError(f"could not read {self._path}: {err}") from err

        with self._lock.write():
            self._content = data
            self._read_at = self._clock()

        return data, data != previous


@dataclass(frozen=True, eq=False)
class ClientCertificate:
    """A parsed TLS client certificate and its private key.

    Equality is identity: consumers compare instances to decide whether TLS state must be
    rebuilt.
    """

    cert_pem: bytes
    key_pem: bytes
    certificate: x509.Certificate
    private_key: Any

    def load_into(self, context: ssl.SSLContext) -> None:
        """Install this certificate chain as the client certificate of ``context``."""
        with tempfile.TemporaryDirectory(prefix="provenance-cert-") as tmp:
            cert_path = Path(tmp) / "client.crt"
            key_path = Path(tmp) / "client.key"
            cert_path.write_bytes(self.cert_pem)
            key_path.write_bytes(self.key_pem)
            key_path.chmod(0o600)
            context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))


def parse_key_pair(cert_pem: bytes, key_pem: bytes) -> ClientCertificate:
    """Parse a PEM certificate and private key and check that they belong together.

    Raises:
        CacheParseError: If either PEM is malformed or the key does not match the certificate.
    """
    try:
        certificate = x509.load_pem_x509_certificate(cert_pem)
        private_key = load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as err:
        raise CacheParseError(f"could not parse x509 key pair: {err}") from err

    cert_public = certificate.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    key_public = private_key.public_key().public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    if cert_public != key_public:
        raise CacheParseError("could not parse x509 key pair: private key does not match certificate")

    return ClientCertificate(cert_pem=cert_pem, key_pem=key_pem, certificate=certificate, private_key=private_key)


class CachedCertificate:
    """Derives a ``ClientCertificate`` from a cert/key file pair.

    The certificate is rebuilt only when either file reports a change; otherwise the same
    object is returned.
    """

    def __init__(self, cert_file: ContentSource, key_file: ContentSource) -> None:
        self._cert_file = cert_file
        self._key_file = key_file
        self._cert: ClientCertificate | None = None
        self._lock = threading.Lock()

    def certificate(self) -> ClientCertificate:
        """Return the current client certificate.

        Raises:
            CacheReadError: If either file cannot be read.
            CacheParseError: If the PEM content is malformed.
        """
        with self._lock:
            try:
                cert_pem, cert_changed = self._cert_file.content()
            except Exception as err:
                raise CacheReadError(f"could not get certificate: {err}") from err

            try:
                key_pem, key_changed = self._key_file.content()
            except Exception as err:
                raise CacheReadError(f"could not get private key: {err}") from err

            if self._cert is None or cert_changed or key_changed:
                self._cert = parse_key_pair(cert_pem, key_pem)
                log.info("client_certificate_loaded", subject=self._cert.certificate.subject.rfc4514_string())

            return self._cert
