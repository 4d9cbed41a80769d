import asyncio
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from lexiflow.config import settings
from lexiflow.models.errors import InvalidArgumentError
from lexiflow.schemas.submission import ErrorResponse, JobResponse, SubmissionResponse, SubmitRequest
from lexiflow.services.pipeline_service import run_job_in_background

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"

router = APIRouter()


@router.get("/", tags=["system"])
async def root() -> dict:
    return {"message": "LexiFlow API v1.0", "status": "Running"}


@router.get("/health", tags=["system"])
async def health(request: Request):
    ok = await asyncio.to_thread(request.app.state.submission_repository.ping)
    if not ok:
        return JSONResponse(status_code=503, content={"status": "unhealthy"})
    return {"status": "ok"}


@router.get("/api/v1/status", tags=["system"])
async def status() -> dict:
    return {
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post(
    "/api/v1/submissions",
    status_code=202,
    response_model=SubmissionResponse,
    responses={422: {"model": ErrorResponse}},
    tags=["submissions"],
)
async def create_submission(
    payload: SubmitRequest,
    request: Request,
    background_tasks: BackgroundTasks,
):
    service = request.app.state.pipeline_service
    try:
        submission, job = await asyncio.to_thread(service.submit, payload.url)
    except InvalidArgumentError as exc:
        logger.info("[submit] rejected | url=%s | reason=%s", payload.url, exc)
        return JSONResponse(status_code=422, content={"status": "error", "message": str(exc)})

    background_tasks.add_task(run_job_in_background, service, job.id)
    return SubmissionResponse.from_submission(submission, [job])


@router.get("/api/v1/submissions/{submission_id}", response_model=SubmissionResponse, tags=["submissions"])
async def get_submission(submission_id: str, request: Request) -> SubmissionResponse:
    submission = await asyncio.to_thread(request.app.state.submission_repository.get, submission_id)
    if submission is None:
        raise HTTPException(status_code=404, detail="Submission not found")
    jobs = await asyncio.to_thread(request.app.state.job_repository.list_for_submission, submission_id)
    return SubmissionResponse.from_submission(submission, jobs)


@router.get("/api/v1/jobs/{job_id}", response_model=JobResponse, tags=["jobs"])
async def get_job(job_id: str, request: Request) -> JobResponse:
    job = await asyncio.to_thread(request.app.state.job_repository.get, job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return JobResponse.from_job(job)


@router.get("/api/v1/submissions", response_model=list[SubmissionResponse], tags=["submissions"])
async def list_submissions(request: Request, limit: int = Query(50, ge=1, le=500)) -> list[SubmissionResponse]:
    """Newest submissions first, without their jobs."""
    submissions = await asyncio.to_thread(request.app.state.submission_repository.list_recent, limit)
    return [SubmissionResponse.from_submission(submission) for submission in submissions]
