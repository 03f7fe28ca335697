"""
Generation job data models.

A generation job is owned by the backend. This side only observes it:
the tracker fetches status, the store keeps the latest view, routes read it.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Any, Optional

from core.exceptions import InvalidTransitionError


class JobStatus(Enum):
    """
    Status of a PDF generation job.

    Lifecycle:
        PENDING -> PROCESSING -> (COMPLETED | FAILED)
    """

    PENDING = "pending"
    """Request created, generation not started."""

    PROCESSING = "processing"
    """Backend is building the PDF."""

    COMPLETED = "completed"
    """PDF is ready to download."""

    FAILED = "failed"
    """Generation failed. Terminal."""

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        """Unknown or missing status strings are treated as PENDING."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.PENDING


_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


def extract_job_id(data: Dict[str, Any]) -> Optional[str]:
    """
    Pull the job id out of a create-request response.

    The backend has used download_id, id and pdf_download.id over time.
    """
    nested = data.get("pdf_download") or {}
    for candidate in (data.get("download_id"), data.get("id"), nested.get("id")):
        if candidate not in (None, ""):
            return str(candidate)
    return None


@dataclass(frozen=True)
class GenerationJob:
    """
    Latest known state of a generation job.

    Immutable; `advance()` returns a new instance so a reader holding the
    previous one never sees it change underneath.
    """

    job_id: str
    """Backend identifier (opaque)."""

    status: JobStatus
    """Current status."""

    updated_at: datetime
    """When this state was observed."""

    artifact_ref: Optional[str] = None
    """Download reference. Only present when COMPLETED."""

    error_message: str = ""
    """Backend's failure reason, if any."""

    def __post_init__(self):
        if self.artifact_ref and self.status is not JobStatus.COMPLETED:
            raise ValueError("artifact_ref is only valid for completed jobs")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def advance(self, observed: "GenerationJob") -> "GenerationJob":
        """
        Apply a newer observation of the same job.

        Re-observing the current status is fine. Moving to a lower rank or
        away from a terminal status raises InvalidTransitionError.
        """
        if observed.status is self.status:
            return replace(
                self,
                updated_at=observed.updated_at,
                artifact_ref=observed.artifact_ref or self.artifact_ref,
                error_message=observed.error_message or self.error_message,
            )
        if self.is_terminal or observed.status.rank < self.status.rank:
            raise InvalidTransitionError(self.job_id, self.status.value, observed.status.value)
        return observed

    @classmethod
    def create_pending(cls, job_id: str) -> "GenerationJob":
        return cls(job_id=str(job_id), status=JobStatus.PENDING, updated_at=datetime.now(timezone.utc))

    @classmethod
    def from_api(cls, job_id: str, data: Dict[str, Any]) -> "GenerationJob":
        """Parse a status response."""
        status = JobStatus.parse(data.get("status"))
        artifact_ref = None
        if status is JobStatus.COMPLETED:
            artifact_ref = (
                data.get("download_url")
                or data.get("file_url")
                or f"/api/catalog/pdf/download/{job_id}/"
            )

        return cls(
            job_id=str(job_id),
            status=status,
            updated_at=datetime.now(timezone.utc),
            artifact_ref=artifact_ref,
            error_message=data.get("error_message") or data.get("error") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "updated_at": self.updated_at.isoformat(),
            "artifact_ref": self.artifact_ref,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class DownloadRecord:
    """One row of the user's PDF downloads list."""

    id: str
    download_type: str
    status: JobStatus
    total_pages: int
    total_amount: Decimal
    created_at: str
    payment_status: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "DownloadRecord":
        return cls(
            id=str(data.get("download_id") or data.get("id")),
            download_type=data.get("download_type") or "free",
            status=JobStatus.parse(data.get("status")),
            total_pages=int(data.get("total_pages") or 0),
            total_amount=Decimal(str(data.get("total_amount") or "0")),
            created_at=data.get("created_at") or "",
            payment_status=data.get("payment_status") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "download_type": self.download_type,
            "status": self.status.value,
            "total_pages": self.total_pages,
            "total_amount": str(self.total_amount),
            "payment_status": self.payment_status,
            "created_at": self.created_at,
        }
