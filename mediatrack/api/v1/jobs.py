"""Job API: upload media, read status, list and remove jobs, fetch remote results.

  POST   /jobs               — receive a video file, create and dispatch a job
  GET    /jobs[?status=]     — list jobs, optionally by status
  GET    /jobs/{job_id}      — current job snapshot
  DELETE /jobs/{job_id}      — stop tracking a job
  DELETE /jobs?status=completed — clear all completed jobs
  GET    /stats              — counts by status
  GET    /results/{job_id}   — result committed by the remote worker, if any
"""

import logging
import os
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, File, HTTPException, Query, UploadFile

from mediatrack.config import settings
from mediatrack.jobs.errors import InputError, JobConflictError, RemoteStoreError
from mediatrack.jobs.models import ExecutionMode, JobRecord, JobStatus
from mediatrack.jobs.progress import stage_for

logger = logging.getLogger(__name__)

router = APIRouter()

# Wired in during lifespan
_dispatcher = None
_result_reader = None
_workspace = None


def set_dispatcher(dispatcher):
    global _dispatcher
    _dispatcher = dispatcher


def set_result_reader(reader):
    global _result_reader
    _result_reader = reader


def set_workspace(workspace):
    global _workspace
    _workspace = workspace


def _require_dispatcher():
    if _dispatcher is None:
        raise HTTPException(status_code=503, detail="Job dispatcher not initialized")
    return _dispatcher


_CHUNK_BYTES = 1024 * 1024


def _job_view(job: JobRecord) -> dict:
    """Job snapshot plus the pipeline stage its progress falls in (local jobs only)."""
    view = job.snapshot()
    stage = None
    if job.execution_mode == ExecutionMode.LOCAL and job.status == JobStatus.PROCESSING:
        found = stage_for(job.progress)
        stage = found.value if found else None
    view["stage"] = stage
    return view


def _validate_upload(file: UploadFile) -> str:
    """Return the file extension, or raise InputError for non-video uploads."""
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in settings.allowed_extensions:
        raise InputError(
            f"Only video files are allowed ({', '.join(settings.allowed_extensions)})"
        )
    if file.content_type and not (
        file.content_type.startswith("video/")
        or file.content_type == "application/octet-stream"
    ):
        raise InputError("Only video files are allowed")
    return ext


async def _save_upload(file: UploadFile, target: Path) -> int:
    total = 0
    try:
        with open(target, "wb") as dst:
            while True:
                chunk = await file.read(_CHUNK_BYTES)
                if not chunk:
                    break
                total += len(chunk)
                if total > settings.max_upload_bytes:
                    raise InputError(
                        f"File too large (max {settings.max_upload_bytes} bytes)",
                        status_code=413,
                    )
                dst.write(chunk)
    except InputError:
        target.unlink(missing_ok=True)
        raise
    if total == 0:
        target.unlink(missing_ok=True)
        raise InputError("Uploaded file is empty")
    return total


# ---------------------------------------------------------------------------
# POST /jobs
# ---------------------------------------------------------------------------

@router.post("/jobs")
async def create_job(file: UploadFile = File(...)):
    """Accept a video upload, persist it, and dispatch a processing job.

    Returns:
        {job_id, status, progress, mode, message}
    """
    dispatcher = _require_dispatcher()

    try:
        ext = _validate_upload(file)
        # Create the record first so the saved file can be named after its id
        job = JobRecord(original_name=file.filename or "upload")
        upload_dir = Path(settings.upload_dir)
        upload_dir.mkdir(parents=True, exist_ok=True)
        target = upload_dir / f"{job.id}{ext}"
        size = await _save_upload(file, target)
    except InputError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except OSError as exc:
        raise HTTPException(status_code=500, detail=f"Failed to save upload: {exc}")

    job = job.model_copy(
        update={"filename": target.name, "size": size, "source_path": str(target)}
    )

    try:
        record = await dispatcher.submit(job)
    except JobConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except InputError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc))
    except RemoteStoreError as exc:
        raise HTTPException(status_code=502, detail=f"Failed to queue job remotely: {exc}")

    if record.execution_mode == ExecutionMode.REMOTE:
        message = "Video uploaded. The remote worker will process it shortly."
    else:
        message = "Video uploaded successfully. Processing started."
    return {
        "job_id": record.id,
        "status": record.status.value,
        "progress": record.progress,
        "mode": record.execution_mode.value,
        "message": message,
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@router.get("/jobs")
async def list_jobs(status: Optional[JobStatus] = Query(default=None)):
    registry = _require_dispatcher().registry
    jobs = await registry.list_by_status(status) if status else await registry.list()
    return [_job_view(job) for job in jobs]


@router.get("/jobs/{job_id}")
async def get_job(job_id: str):
    job = await _require_dispatcher().get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_view(job)


@router.get("/stats")
async def get_stats():
    stats = await _require_dispatcher().registry.stats()
    return stats.model_dump()


# ---------------------------------------------------------------------------
# Housekeeping
# ---------------------------------------------------------------------------

@router.delete("/jobs/{job_id}")
async def remove_job(job_id: str):
    removed = await _require_dispatcher().registry.remove(job_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Job not found")
    if _workspace is not None:
        _workspace.discard(job_id)
    return {"job_id": job_id, "removed": True}


@router.delete("/jobs")
async def clear_jobs(status: JobStatus = Query(...)):
    if status != JobStatus.COMPLETED:
        raise HTTPException(status_code=400, detail="Only completed jobs can be cleared")
    count = await _require_dispatcher().registry.clear_completed()
    return {"cleared": count}


# ---------------------------------------------------------------------------
# GET /results/{job_id}
# ---------------------------------------------------------------------------

@router.get("/results/{job_id}")
async def get_result(job_id: str):
    """Look for the remote worker's result and reconcile the job if it exists.

    Only remote-queue jobs are reconciled here; local jobs are completed by
    their own pipeline.
    """
    dispatcher = _require_dispatcher()
    if _result_reader is None:
        raise HTTPException(status_code=503, detail="Result store not initialized")

    job = await dispatcher.get_status(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    if job.execution_mode != ExecutionMode.REMOTE:
        raise HTTPException(
            status_code=409,
            detail=f"Job {job_id} runs in {job.execution_mode.value} mode and has no remote result",
        )

    try:
        result = await _result_reader.fetch(job_id)
    except RemoteStoreError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=502, detail=f"Malformed result file: {exc}")
    if result is None:
        raise HTTPException(status_code=404, detail="Results not found yet")

    # Terminal jobs ignore this, so repeated reads are harmless
    reconciled = await dispatcher.registry.update_result(job_id, result)
    if reconciled is None:
        reconciled = await dispatcher.get_status(job_id)
    return {
        "job_id": job_id,
        "result": result.model_dump(mode="json"),
        "job": reconciled.snapshot() if reconciled else None,
    }
