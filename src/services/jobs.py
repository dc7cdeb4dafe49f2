from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal, TypeVar

from config import settings

from .event_bus import event_bus

logger = logging.getLogger("vfrplanner.jobs")

JobStatus = Literal["running", "succeeded", "failed", "cancelled"]
JOB_EVENT = "jobs"

T = TypeVar("T")
JobProgress = Callable[[float], Awaitable[None]]


def _now_iso() -> str:
    iso = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    if iso.endswith("+00:00"):
        return iso[:-6] + "Z"
    return iso


def new_job_id() -> str:
    return uuid.uuid4().hex


@dataclass(slots=True)
class SearchJobUpdate:
    job_id: str
    status: JobStatus
    progress: float = 0.0
    message: str | None = None
    error: str | None = None
    summary: dict[str, Any] | None = None
    updated_at: str = field(default_factory=_now_iso)

    def to_payload(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "status": self.status,
            "progress": round(self.progress, 4),
            "message": self.message,
            "error": self.error,
            "summary": self.summary,
            "updatedAt": self.updated_at,
        }


class JobRegistry:
    """Latest update per search job, replayed to new event stream clients."""

    def __init__(self, *, max_jobs: int | None = None) -> None:
        self._lock = asyncio.Lock()
        self._jobs: dict[str, SearchJobUpdate] = {}
        self._max_jobs = max(1, max_jobs if max_jobs is not None else settings.vfr_job_history_limit)

    async def publish(self, update: SearchJobUpdate) -> None:
        async with self._lock:
            self._jobs[update.job_id] = update
            if len(self._jobs) > self._max_jobs:
                self._trim_locked()
        await event_bus.publish(JOB_EVENT, update.to_payload())

    async def get(self, job_id: str) -> SearchJobUpdate | None:
        async with self._lock:
            return self._jobs.get(job_id)

    async def list(self) -> list[dict[str, Any]]:
        async with self._lock:
            ordered = sorted(self._jobs.values(), key=lambda item: item.updated_at)
            return [entry.to_payload() for entry in ordered]

    def _trim_locked(self) -> None:
        ordered = sorted(self._jobs.items(), key=lambda item: item[1].updated_at)
        for job_id, _ in ordered[: len(self._jobs) - self._max_jobs]:
            self._jobs.pop(job_id, None)


job_registry = JobRegistry()


async def emit_job_status(
    *,
    job_id: str,
    status: JobStatus,
    progress: float = 0.0,
    message: str | None = None,
    error: str | None = None,
    summary: dict[str, Any] | None = None,
) -> None:
    await job_registry.publish(
        SearchJobUpdate(
            job_id=job_id,
            status=status,
            progress=progress,
            message=message,
            error=error,
            summary=summary,
        )
    )


async def run_job(
    job_id: str,
    work: Callable[[JobProgress], Awaitable[T]],
    *,
    summarize: Callable[[T], dict[str, Any]] | None = None,
) -> T:
    """Run ``work`` as a tracked job, publishing progress and the final status.

    Failures are published and re-raised; cancellation is published as
    ``cancelled`` and propagates.
    """

    await emit_job_status(job_id=job_id, status="running", progress=0.0, message="Search started")

    async def _progress(fraction: float) -> None:
        await emit_job_status(job_id=job_id, status="running", progress=fraction)

    try:
        result = await work(_progress)
    except asyncio.CancelledError:
        logger.info("Job %s cancelled", job_id)
        await emit_job_status(job_id=job_id, status="cancelled", message="Search cancelled")
        raise
    except Exception as exc:
        logger.exception("Job %s failed", job_id)
        await emit_job_status(job_id=job_id, status="failed", error=str(exc) or exc.__class__.__name__)
        raise

    summary = summarize(result) if summarize is not None else None
    await emit_job_status(job_id=job_id, status="succeeded", progress=1.0, message="Search complete", summary=summary)
    return result


__all__ = [
    "JobRegistry",
    "JobStatus",
    "SearchJobUpdate",
    "emit_job_status",
    "job_registry",
    "new_job_id",
    "run_job",
]
