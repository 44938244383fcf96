"""
Host-facing request and response types.

A :class:`QueryDataRequest` is a batch of :class:`Query` objects addressed to
one data source. The response maps each query's ``ref_id`` to a
:class:`DataResponse` holding either frames or an error.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .core.context import PluginContext


@dataclass(frozen=True, slots=True)
class TimeRange:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class Query:
    """
    One query of a batch.

    ``model_json`` holds the backend-specific model (``expr``, ``legendFormat``,
    ``interval``...) either as raw JSON text or an already decoded mapping.
    """

    ref_id: str
    time_range: TimeRange
    model_json: Mapping[str, Any] | bytes | str = field(default_factory=dict)
    query_type: str = ""
    interval: timedelta = timedelta(seconds=1)
    max_data_points: int = 100

    def model(self) -> Mapping[str, Any]:
        if isinstance(self.model_json, Mapping):
            return self.model_json
        payload = json.loads(self.model_json or "{}")
        if not isinstance(payload, dict):
            raise ValueError("query model must be a JSON object")
        return payload


@dataclass(frozen=True, slots=True)
class QueryDataRequest:
    plugin_context: PluginContext
    queries: Sequence[Query] = field(default_factory=tuple)


@dataclass(slots=True)
class DataFrame:
    """A single series: labels plus aligned timestamps and values."""

    name: str
    ref_id: str
    labels: Mapping[str, str] = field(default_factory=dict)
    timestamps: List[datetime] = field(default_factory=list)
    values: List[Optional[float]] = field(default_factory=list)
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "refId": self.ref_id,
            "labels": dict(self.labels),
            "timestamps": [ts.isoformat() for ts in self.timestamps],
            "values": list(self.values),
            "meta": dict(self.meta),
        }


@dataclass(slots=True)
class DataResponse:
    frames: List[DataFrame] = field(default_factory=list)
    error: Optional[BaseException] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"frames": [frame.to_dict() for frame in self.frames]}
        if self.error is not None:
            payload["error"] = str(self.error)
        return payload


@dataclass(slots=True)
class QueryDataResponse:
    responses: Dict[str, DataResponse] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {ref_id: response.to_dict() for ref_id, response in self.responses.items()}
