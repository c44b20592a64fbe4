"""Hierarchical, namespaced, multi-valued label container.

Every collector writes its output into a ``LabelContainer``. Segments are cheap views that
nest a key prefix and delegate writes to their parent, so the root container always holds
the fully qualified key of every label written anywhere below it::

    md = LabelContainer(prefix="kubernetes")
    md.segment("pod").add_label("name", "web-0")
    md.get_labels()  # {"kubernetes:pod:name": ["web-0"]}
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any

from process_provenance.utils import ReadWriteLock

DEFAULT_SEPARATOR = ":"

Labels = dict[str, list[str]]


@dataclass(frozen=True)
class SlicedLabel:
    """A single ``name=value`` pair of a flattened container."""

    name: str
    value: str


@dataclass(frozen=True)
class _Options:
    prefix: str = ""
    separator: str = DEFAULT_SEPARATOR
    store_at_segment: bool = False
    unique_keys: bool = False
    unique_values: bool = False
    allow_empty_values: bool = False


class LabelContainer:
    """Namespaced multi-valued string map with optional parent delegation.

    Args:
        prefix: Key prefix contributed by this container.
        separator: Joins the prefix and the key. Defaults to ``":"``.
        store_at_segment: Also keep a copy of each write at this level when a parent exists.
        unique_keys: A repeated write to an existing key replaces its values.
        unique_values: Values of a key are deduplicated, keeping first-seen order.
        allow_empty_values: Store empty strings instead of dropping them.
        concurrent: Guard the container with a reader/writer lock.
        parent: Container that receives every write, fully qualified.
    """

    def __init__(
        self,
        *,
        prefix: str = "",
        separator: str = DEFAULT_SEPARATOR,
        store_at_segment: bool = False,
        unique_keys: bool = False,
        unique_values: bool = False,
        allow_empty_values: bool = False,
        concurrent: bool = False,
        parent: LabelContainer | None = None,
    ) -> None:
        self._opts = _Options(
            prefix=prefix,
            separator=separator or DEFAULT_SEPARATOR,
            store_at_segment=store_at_segment,
            unique_keys=unique_keys,
            unique_values=unique_values,
            allow_empty_values=allow_empty_values,
        )
        self._parent = parent
        self._labels: Labels = {}
        self._lock = ReadWriteLock() if concurrent else None

    @property
    def prefix(self) -> str:
        return self._opts.prefix

    @property
    def concurrent(self) -> bool:
        return self._lock is not None

    def segment(self, name: str, **overrides: Any) -> LabelContainer:
        """Return a child view whose keys are nested under ``name``.

        The child inherits every option of this container; ``overrides`` replace
        individual options (for example ``store_at_segment=True``).
        """
        options: dict[str, Any] = {
            "separator": self._opts.separator,
            "store_at_segment": self._opts.store_at_segment,
            "unique_keys": self._opts.unique_keys,
            "unique_values": self._opts.unique_values,
            "allow_empty_values": self._opts.allow_empty_values,
            "concurrent": self.concurrent,
        }
        options.update(overrides)
        options["prefix"] = name
        options["parent"] = self
        return LabelContainer(**options)

    def add_label(self, name: str, *values: str | None) -> LabelContainer:
        """Add ``values`` under ``name`` and return ``self`` for chaining."""
        if self._opts.allow_empty_values:
            kept = [v if v is not None else "" for v in values]
        else:
            kept = [v for v in values if v]
            if not kept:
                return self

        if self._opts.prefix:
            name = f"{self._opts.prefix}{self._opts.separator}{name}" if name else self._opts.prefix

        if self._parent is not None:
            self._parent.add_label(name, *kept)
            if not self._opts.store_at_segment:
                return self

        with self._write_lock():
            self._store(name, kept)
        return self

    def add_labels(self, labels: Mapping[str, Iterable[str | None] | None]) -> LabelContainer:
        """Add every entry of ``labels``. Each key is written independently."""
        for name, values in labels.items():
            if values is None:
                continue
            self.add_label(name, *values)
        return self

    def get_labels(self) -> Labels:
        """Return a copy of the stored labels."""
        with self._read_lock():
            return {name: list(values) for name, values in self._labels.items()}

    def get_label_value(self, name: str) -> str:
        """Return the first value stored under ``name``, or ``""``."""
        with self._read_lock():
            values = self._labels.get(name)
            return values[0] if values else ""

    def get_label_values(self, name: str) -> tuple[list[str], bool]:
        """Return the values stored under ``name`` and whether the key exists."""
        with self._read_lock():
            if name not in self._labels:
                return [], False
            return list(self._labels[name]), True

    def get_labels_slice(self) -> list[SlicedLabel]:
        """Flatten to ``(name, value)`` pairs sorted by name."""
        with self._read_lock():
            items = sorted(self._labels.items(), key=lambda item: item[0])
            return [SlicedLabel(name=name, value=value) for name, values in items for value in values]

    def __str__(self) -> str:
        return "".join(f"{label.name}={label.value}\n" for label in self.get_labels_slice())

    def __repr__(self) -> str:
        return f"LabelContainer(prefix={self._opts.prefix!r}, labels={len(self._labels)})"

    def _store(self, name: str, values: list[str]) -> None:
        if name not in self._labels:
            self._labels[name] = []
        elif self._opts.unique_keys:
            self._labels[name] = values[-1:]
            return

        self._labels[name].extend(values)

        if self._opts.unique_values:
            self._labels[name] = list(dict.fromkeys(self._labels[name]))

    def _read_lock(self):  # type: ignore[no-untyped-def]
        return self._lock.read() if self._lock is not None else nullcontext()

    def _write_lock(self):  # type: ignore[no-untyped-def]
        return self._lock.write() if self._lock is not None else nullcontext()


def labels_from_mapping(mapping: Mapping[str, str] | None) -> Labels:
    """Convert a single-valued mapping (e.g. pod labels) into ``Labels``."""
    return {key: [value] for key, value in (mapping or {}).items()}
