"""Collector contract and the fan-out/fan-in collector collection."""

from __future__ import annotations

import asyncio
import threading
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import structlog

from process_provenance.errors import MetadataCollectionError
from process_provenance.labels import LabelContainer

log = structlog.get_logger()


@runtime_checkable
class Collector(Protocol):
    """Anything that produces a ``LabelContainer`` for the process bound in context."""

    async def get_metadata(self) -> LabelContainer: ...


@dataclass
class CollectionResult:
    """Merged output of a collection pass and the failures encountered along the way."""

    metadata: LabelContainer
    errors: list[Exception] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        """Raise a combined ``MetadataCollectionError`` if any collector failed."""
        if self.errors:
            raise MetadataCollectionError("metadata collection failed", list(self.errors), self.metadata)


class CollectorCollection:
    """Runs every registered collector and merges their labels.

    A failing collector never prevents the others from contributing: failures are
    combined into the result instead of short-circuiting the pass.
    """

    def __init__(self, collectors: Sequence[Collector] = ()) -> None:
        self._collectors: dict[str, Collector] = {}
        self._lock = threading.Lock()
        for collector in collectors:
            self.add(collector)

    def add(self, collector: Collector) -> None:
        with self._lock:
            self._collectors[uuid.uuid4().hex] = collector

    def list(self) -> list[Collector]:
        """Return a snapshot of the registered collectors."""
        with self._lock:
            return list(self._collectors.values())

    def clear(self) -> None:
        with self._lock:
            self._collectors = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._collectors)

    async def collect(self) -> CollectionResult:
        """Run all collectors concurrently; never raises for individual collector failures."""
        collectors = self.list()
        md = LabelContainer()
        errors: list[Exception] = []

        results = await asyncio.gather(*(c.get_metadata() for c in collectors), return_exceptions=True)
        for collector, result in zip(collectors, results, strict=True):
            if isinstance(result, MetadataCollectionError):
                if result.metadata is not None:
                    md.add_labels(result.metadata.get_labels())
                errors.extend(result.exceptions)
            elif isinstance(result, Exception):
                log.error("collector_failed", collector=type(collector).__name__, error=str(result))
                errors.append(result)
            elif isinstance(result, BaseException):
                raise result
            else:
                md.add_labels(result.get_labels())

        return CollectionResult(metadata=md, errors=errors)

    async def get_metadata(self) -> LabelContainer:
        """Collector interface: merged labels, or ``MetadataCollectionError`` carrying them."""
        result = await self.collect()
        result.raise_for_errors()
        return result.metadata

