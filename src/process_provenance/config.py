"""Resolver and kubelet configuration with environment variable overrides, static label files."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from process_provenance.utils import env_flag


@dataclass(frozen=True)
class ResolverConfig:
    """Runtime identity resolution settings."""

    retry_max_elapsed: float = field(
        default_factory=lambda: float(os.environ.get("PROVENANCE_RETRY_MAX_ELAPSED_SECONDS", "5"))
    )
    retry_initial_interval: float = field(
        default_factory=lambda: float(os.environ.get("PROVENANCE_RETRY_INITIAL_INTERVAL_SECONDS", "0.5"))
    )
    retry_max_interval: float = field(
        default_factory=lambda: float(os.environ.get("PROVENANCE_RETRY_MAX_INTERVAL_SECONDS", "2"))
    )
    skip_on_soft_error: bool = field(default_factory=lambda: env_flag(os.environ.get("PROVENANCE_SKIP_ON_SOFT_ERROR")))
    file_cache_ttl: float = field(
        default_factory=lambda: float(os.environ.get("PROVENANCE_FILE_CACHE_TTL_SECONDS", "5"))
    )
    host_proc: str = field(default_factory=lambda: os.environ.get("HOST_PROC", ""))


@dataclass(frozen=True)
class KubeletConfig:
    """Direct kubelet access settings. Empty strings mean "not configured"."""

    address: str = field(default_factory=lambda: os.environ.get("KUBELET_ADDRESS", ""))
    token_file: str = field(default_factory=lambda: os.environ.get("KUBELET_TOKEN_FILE", ""))
    ca_file: str = field(default_factory=lambda: os.environ.get("KUBELET_CA_FILE", ""))
    cert_file: str = field(default_factory=lambda: os.environ.get("KUBELET_CERT_FILE", ""))
    key_file: str = field(default_factory=lambda: os.environ.get("KUBELET_KEY_FILE", ""))
    skip_cert_verify: bool = field(default_factory=lambda: env_flag(os.environ.get("KUBELET_SKIP_CERT_VERIFY")))

    @property
    def configured(self) -> bool:
        return bool(self.address or self.ca_file or self.cert_file or self.token_file)


def get_resolver_config() -> ResolverConfig:
    """Return resolver configuration with environment variable overrides applied."""
    return ResolverConfig()


def get_kubelet_config() -> KubeletConfig:
    """Return kubelet configuration with environment variable overrides applied."""
    return KubeletConfig()


def load_static_labels(path: Path) -> dict[str, list[str]]:
    """Parse a YAML static label file.

    The file must contain a top-level ``labels`` mapping whose values are strings or
    lists of strings.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the content is malformed.
    """
    if not path.exists():
        msg = f"Static label file not found: {path}."
        raise FileNotFoundError(msg)

    raw = yaml.safe_load(path.read_text())

    if not isinstance(raw, dict) or "labels" not in raw:
        msg = f"Static label file {path} must contain a top-level 'labels' key."
        raise ValueError(msg)

    labels_raw: Any = raw["labels"]
    if not isinstance(labels_raw, dict):
        msg = f"Static label file {path} has an invalid 'labels' section."
        raise ValueError(msg)

    labels: dict[str, list[str]] = {}
    for name, value in labels_raw.items():
        if isinstance(value, list):
            labels[str(name)] = [str(v) for v in value]
        elif isinstance(value, str | int | float | bool):
            labels[str(name)] = [str(value)]
        else:
            msg = f"Label '{name}' must be a string or a list of strings, got {type(value).__name__}."
            raise ValueError(msg)

    return labels


def static_labels_path() -> Path | None:
    """Return the static label file configured by ``PROVENANCE_STATIC_LABELS``, if any."""
    value = os.environ.get("PROVENANCE_STATIC_LABELS", "")
    return Path(value) if value else None
