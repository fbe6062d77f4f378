"""Geocode job records tracked in the Result Store."""

import time
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from locallens.lib.geocoder.base import GeocodeKind


class JobStatus(StrEnum):
    """Status of a geocode job. Transitions only move forward."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


# Allowed next states for each status
_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def _now() -> int:
    return int(time.time())


@dataclass
class GeocodeJob:
    """One unit of asynchronous geocoding work."""

    kind: GeocodeKind
    input: dict[str, Any]
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.QUEUED
    result: dict[str, Any] | None = None
    error: str | None = None
    created_at: int = field(default_factory=_now)
    completed_at: int | None = None
    cached: bool = False

    def can_advance(self, status: JobStatus) -> bool:
        """Whether moving to ``status`` respects the forward-only lifecycle."""
        return status in _TRANSITIONS[self.status]

    def advance(
        self,
        status: JobStatus,
        *,
        result: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> "GeocodeJob":
        """Move the job to ``status`` in place.

        Args:
            status: Target status.
            result: Result payload (required for COMPLETED).
            error: Error message (used for FAILED).

        Returns:
            The job itself.

        Raises:
            ValueError: On a regression, a change to a terminal job, or a
                completion without a result.
        """
        if not self.can_advance(status):
            msg = f"Job {self.job_id} cannot move from {self.status} to {status}"
            raise ValueError(msg)
        if status == JobStatus.COMPLETED and result is None:
            msg = "A completed job requires a result"
            raise ValueError(msg)

        self.status = status
        if status == JobStatus.COMPLETED:
            self.result = result
        if status == JobStatus.FAILED:
            self.error = error or "Geocoding failed"
        if status.is_terminal:
            self.completed_at = _now()
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire/store representation."""
        data: dict[str, Any] = {
            "jobId": self.job_id,
            "kind": self.kind.value,
            "input": self.input,
            "status": self.status.value,
            "createdAt": self.created_at,
            "cached": self.cached,
        }
        if self.status == JobStatus.COMPLETED:
            data["result"] = self.result
        if self.status == JobStatus.FAILED:
            data["error"] = self.error
        if self.completed_at is not None:
            data["completedAt"] = self.completed_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GeocodeJob":
        """Rebuild a job from its stored representation.

        Raises:
            KeyError, ValueError: If the record is malformed.
        """
        return cls(
            kind=GeocodeKind(data["kind"]),
            input=dict(data["input"]),
            job_id=str(data["jobId"]),
            status=JobStatus(data["status"]),
            result=data.get("result"),
            error=data.get("error"),
            created_at=int(data.get("createdAt") or _now()),
            completed_at=data.get("completedAt"),
            cached=bool(data.get("cached", False)),
        )
