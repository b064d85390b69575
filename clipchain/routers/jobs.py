"""
Jobs Router
Queues chained generations to run in the background and reports their progress.
"""

from datetime import datetime
from typing import Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from ..config import get_settings
from ..models.generation import GenerationRequest
from ..models.job import GenerationJob, JobStatus
from ..services.job_queue import get_job_queue
from ..services.job_store import get_job_store
from ..services.video_pipeline import get_video_pipeline
from ..utils.exceptions import ClipChainError, InsufficientCreditsError, JobNotFoundError
from ..utils.logger import get_logger
from .dependencies import get_user_id

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
logger = get_logger()

# In-memory runtime cache backed by SQLite persistence
jobs_db: Dict[str, GenerationJob] = {}

job_store = get_job_store()
job_queue = get_job_queue()


async def _persist_job(job: GenerationJob):
    job.updated_at = datetime.utcnow()
    await job_store.upsert(job)


async def initialize_job_state():
    """Mark jobs that were running when the server stopped as failed."""
    await job_store.initialize()
    jobs_db.clear()

    interrupted = await job_store.list_in_progress()
    for job in interrupted:
        job.status = JobStatus.FAILED
        job.error_code = "INTERRUPTED"
        job.error_message = "Job interrupted by server restart"
        await _persist_job(job)

    if interrupted:
        logger.warning(f"Marked {len(interrupted)} interrupted jobs as failed")


def configure_job_queue():
    settings = get_settings()
    job_queue.configure(
        processor=process_job,
        worker_count=settings.job_worker_concurrency,
        max_pending=settings.max_pending_jobs,
    )


async def _load_job(job_id: str, user_id: str) -> GenerationJob:
    job = jobs_db.get(job_id) or await job_store.get(job_id)
    if not job or job.user_id != user_id:
        raise JobNotFoundError(job_id)
    return job


@router.post("", response_model=GenerationJob, status_code=status.HTTP_202_ACCEPTED)
async def create_job(request: GenerationRequest, user_id: str = Depends(get_user_id)):
    """Validate and queue a chained generation."""
    pipeline = get_video_pipeline()
    settings = get_settings()

    request.validate_for_generation(settings.clip_max_duration, settings.max_clips)
    clip_count = request.clip_count(settings.clip_max_duration)

    # Fail fast; the binding reservation happens when the job runs
    balance = await pipeline.ledger.get_balance(user_id)
    cost = pipeline.cost_for(clip_count)
    if balance.remaining_credits < cost:
        raise InsufficientCreditsError(required=cost, remaining=balance.remaining_credits)

    if not job_queue.can_accept():
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Job queue is full. Try again in a few minutes.",
        )

    job = GenerationJob(
        user_id=user_id,
        request=request.model_dump(mode="json", by_alias=True),
        clip_count=clip_count,
    )
    jobs_db[job.id] = job
    await _persist_job(job)

    if not job_queue.enqueue_nowait(job.id):
        jobs_db.pop(job.id, None)
        await job_store.delete(job.id)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Job queue is full. Try again later.",
        )

    logger.info(f"Job queued: {job.id} ({clip_count} clips for {user_id})")
    return job


@router.get("", response_model=List[GenerationJob])
async def list_jobs(user_id: str = Depends(get_user_id)):
    stored = {job.id: job for job in await job_store.list_for_user(user_id)}
    stored.update({k: v for k, v in jobs_db.items() if v.user_id == user_id})
    return sorted(stored.values(), key=lambda item: item.created_at, reverse=True)


@router.get("/{job_id}", response_model=GenerationJob)
async def get_job(job_id: str, user_id: str = Depends(get_user_id)):
    return await _load_job(job_id, user_id)


def _status_for_progress(progress: float) -> JobStatus:
    if progress < 78:
        return JobStatus.GENERATING
    if progress < 92:
        return JobStatus.STITCHING
    return JobStatus.UPLOADING


async def process_job(job_id: str):
    """Run one queued generation to a terminal state."""
    job = jobs_db.get(job_id) or await job_store.get(job_id)
    if not job:
        return
    jobs_db[job_id] = job

    def progress(pct: float, message: str):
        job.progress = round(min(pct, 99.0), 1)
        job.status = _status_for_progress(pct).value
        logger.debug(f"[job {job_id[:8]}] {job.progress}% {message}")

    try:
        job.status = JobStatus.GENERATING.value
        await _persist_job(job)

        request = GenerationRequest.model_validate(job.request)
        result = await get_video_pipeline().generate(job.user_id, request, progress_callback=progress)

        job.status = JobStatus.COMPLETED.value
        job.progress = 100
        job.video_url = result.video_url
        job.transition = result.transition
        job.operation_names = result.operation_names
        job.credits_used = result.credits_used
        job.completed_at = datetime.utcnow()
        logger.info(f"Job {job_id} completed: {result.video_url}")

    except ClipChainError as exc:
        logger.error(f"Job {job_id} failed [{exc.code}]: {exc.message}")
        job.status = JobStatus.FAILED.value
        job.error_code = exc.code
        job.error_message = exc.message

    except Exception as exc:
        logger.exception(f"Job {job_id} failed: {exc}")
        job.status = JobStatus.FAILED.value
        job.error_code = "INTERNAL_ERROR"
        job.error_message = "An unexpected error occurred"

    finally:
        await _persist_job(job)
        jobs_db.pop(job_id, None)
