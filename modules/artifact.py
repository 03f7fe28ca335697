"""Download finished bundles and inspect them with pypdf."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from core.exceptions import WorkflowStateError
from models.generation_job import GenerationJob, JobStatus
from logging_config import get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class ArtifactInfo:
    """What a downloaded bundle actually contains."""

    job_id: str
    size_bytes: int
    pages: int
    first_page_width_in: Optional[float] = None
    first_page_height_in: Optional[float] = None
    error: str = ""

    def has_pages(self, expected: int) -> bool:
        return not self.error and self.pages == expected


def inspect_pdf(job_id: str, data: bytes) -> ArtifactInfo:
    """Page count and first-page size. Malformed PDFs are reported, not raised."""
    try:
        reader = PdfReader(io.BytesIO(data))
        pages = len(reader.pages)
        width = height = None
        if pages:
            box = reader.pages[0].mediabox
            width = round(float(box.width) / 72, 2)
            height = round(float(box.height) / 72, 2)
    except PdfReadError as exc:
        logger.warning(f"Bundle {job_id} is not a readable PDF: {exc}")
        return ArtifactInfo(job_id=job_id, size_bytes=len(data), pages=0, error=f"PDF analysis failed: {exc}")

    return ArtifactInfo(
        job_id=job_id,
        size_bytes=len(data),
        pages=pages,
        first_page_width_in=width,
        first_page_height_in=height,
    )


def download_artifact(api_client, job: GenerationJob) -> bytes:
    """
    PDF bytes of a completed job.

    Raises:
        WorkflowStateError: Job has not completed
    """
    if job.status is not JobStatus.COMPLETED:
        raise WorkflowStateError("download the PDF", job.status.value, user_message="The PDF is not ready yet.")

    data = api_client.download_pdf(job.job_id)
    logger.info(f"Downloaded bundle {job.job_id} ({len(data)} bytes)")
    return data
