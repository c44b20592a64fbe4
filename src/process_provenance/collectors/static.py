"""Collector returning a fixed, configured set of labels."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

from process_provenance.config import load_static_labels
from process_provenance.labels import LabelContainer


class StaticCollector:
    """Returns the same labels for every process."""

    def __init__(self, labels: Mapping[str, Sequence[str]]) -> None:
        self._md = LabelContainer()
        self._md.add_labels(labels)

    @classmethod
    def from_file(cls, path: Path) -> StaticCollector:
        return cls(load_static_labels(path))

    async def get_metadata(self) -> LabelContainer:
        return self._md
