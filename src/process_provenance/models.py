"""Pydantic v2 models for tool outputs and errors."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from process_provenance.collection import CollectionResult


class ToolError(BaseModel):
    """Structured error for one failed collector."""

    error: str
    source: str
    partial_data: bool = False


class Label(BaseModel):
    name: str
    value: str


class ProcessMetadataOutput(BaseModel):
    """Output for get_process_metadata."""

    pid: int
    labels: list[Label] = Field(default_factory=list)
    errors: list[ToolError] = Field(default_factory=list)
    timestamp: str

    @classmethod
    def from_result(cls, pid: int, result: CollectionResult) -> ProcessMetadataOutput:
        labels = [Label(name=label.name, value=label.value) for label in result.metadata.get_labels_slice()]
        return cls(
            pid=pid,
            labels=labels,
            errors=[
                ToolError(error=str(err), source=type(err).__name__, partial_data=bool(labels))
                for err in result.errors
            ],
            timestamp=datetime.now(tz=UTC).isoformat(),
        )
