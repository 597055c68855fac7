# poolroute/core/scheduling/pending.py
"""
Pending-edit tracking for an interactive route editing session.

Edits produced by drags and technician assignments are accumulated here
per job, without touching storage, until the operator commits them.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, Iterator, Optional, Union


class _Unset:
    """Marker for a patch field that was never set (distinct from None)."""

    _instance: Optional["_Unset"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

# Python attribute -> wire key used by the bulk-reschedule endpoint
_WIRE_KEYS = {
    "scheduled_date": "scheduledDate",
    "sort_order": "sortOrder",
    "technician_id": "technicianId",
}


@dataclass(frozen=True)
class JobPatch:
    """
    Partial update of one job. Any subset of the three fields may be set;
    ``technician_id=None`` (unassign) and ``sort_order=None`` are real values.
    """
    scheduled_date: Union[datetime, _Unset] = UNSET
    sort_order: Union[int, None, _Unset] = UNSET
    technician_id: Union[str, None, _Unset] = UNSET

    def merge(self, newer: "JobPatch") -> "JobPatch":
        """Fields set on ``newer`` win; everything else is kept."""
        return replace(self, **newer.values())

    def values(self) -> dict[str, Any]:
        """Only the fields that were set."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.values()

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        for name, value in self.values().items():
            if isinstance(value, datetime):
                value = value.isoformat()
            payload[_WIRE_KEYS[name]] = value
        return payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "JobPatch":
        kwargs: dict[str, Any] = {}
        for name, key in _WIRE_KEYS.items():
            if key not in payload:
                continue
            value = payload[key]
            if name == "scheduled_date":
                if not value:
                    continue
                if isinstance(value, str):
                    value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            kwargs[name] = value
        return cls(**kwargs)


@dataclass(frozen=True)
class JobUpdate:
    """One entry of a bulk commit: a job id and the patch to apply to it."""
    job_id: str
    patch: JobPatch

    def to_payload(self) -> dict[str, Any]:
        return {"jobId": self.job_id, **self.patch.to_payload()}


class PendingEditTracker:
    """
    Per-job accumulation of uncommitted patches.

    Single writer, single reader: scoped to one editing session.
    """

    def __init__(self) -> None:
        self._pending: dict[str, JobPatch] = {}

    def record(self, job_id: str, patch: JobPatch) -> JobPatch:
        """Merge ``patch`` into the pending patch for ``job_id``."""
        if patch.is_empty():
            return self._pending.get(job_id, JobPatch())
        merged = self._pending.get(job_id, JobPatch()).merge(patch)
        self._pending[job_id] = merged
        return merged

    def record_many(self, patches: dict[str, JobPatch]) -> None:
        for job_id, patch in patches.items():
            self.record(job_id, patch)

    def get(self, job_id: str) -> Optional[JobPatch]:
        return self._pending.get(job_id)

    def flatten(self) -> list[JobUpdate]:
        """Pending patches as a commit batch (insertion order)."""
        return [JobUpdate(job_id, patch) for job_id, patch in self._pending.items()]

    def to_payload(self) -> list[dict[str, Any]]:
        return [update.to_payload() for update in self.flatten()]

    def clear(self) -> None:
        self._pending.clear()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._pending

    def __iter__(self) -> Iterator[str]:
        return iter(self._pending)
