from datetime import datetime

from pydantic import BaseModel

from lexiflow.models.deconstruction_job import DeconstructionJob
from lexiflow.models.submission import Submission


class SubmitRequest(BaseModel):
    # validated by Submission.create
    url: str


class JobResponse(BaseModel):
    id: str
    submission_id: str
    status: str
    retry_count: int
    last_error: str | None = None
    raw_content: str | None = None
    cleaned_markdown: str | None = None
    analysis_json: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    @classmethod
    def from_job(cls, job: DeconstructionJob, include_artifacts: bool = True) -> "JobResponse":
        return cls(
            id=job.id,
            submission_id=job.submission_id,
            status=job.status.name.lower(),
            retry_count=job.retry_count,
            last_error=job.last_error,
            raw_content=job.raw_content if include_artifacts else None,
            cleaned_markdown=job.cleaned_markdown if include_artifacts else None,
            analysis_json=job.analysis_json if include_artifacts else None,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class SubmissionResponse(BaseModel):
    id: str
    source_url: str
    status: str
    created_at: datetime
    processed_at: datetime | None = None
    jobs: list[JobResponse] = []

    @classmethod
    def from_submission(
        cls, submission: Submission, jobs: list[DeconstructionJob] | None = None
    ) -> "SubmissionResponse":
        return cls(
            id=submission.id,
            source_url=submission.source_url,
            status=submission.status.name.lower(),
            created_at=submission.created_at,
            processed_at=submission.processed_at,
            jobs=[JobResponse.from_job(job, include_artifacts=False) for job in jobs or []],
        )


class ErrorResponse(BaseModel):
    status: str = "error"
    message: str
