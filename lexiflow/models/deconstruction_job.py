import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum

from lexiflow.models.clock import Clock, utc_now
from lexiflow.models.errors import IllegalTransitionError


class JobStatus(IntEnum):
    QUEUED = 0
    FETCHING = 1
    CLEANING = 2
    ANALYZING = 3
    COMPLETED = 4
    FAILED = 5


TERMINAL_JOB_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}

# Failed -> Queued is the retry edge.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.FETCHING, JobStatus.FAILED}),
    JobStatus.FETCHING: frozenset({JobStatus.CLEANING, JobStatus.FAILED}),
    JobStatus.CLEANING: frozenset({JobStatus.ANALYZING, JobStatus.FAILED}),
    JobStatus.ANALYZING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset({JobStatus.QUEUED}),
}


@dataclass
class DeconstructionJob:
    """
    One attempt at the fetch -> clean -> analyze pipeline for a submission.

    The job only references its submission by id; anything that needs the
    submission itself must load it through a repository. Mutating calls are
    not synchronised here, so callers must hold exclusive access to a job
    while changing it.
    """

    id: str
    submission_id: str
    status: JobStatus
    created_at: datetime
    retry_count: int = 0
    raw_content: str | None = None
    cleaned_markdown: str | None = None
    analysis_json: str | None = None
    last_error: str | None = None
    completed_at: datetime | None = None

    @classmethod
    def create(cls, submission_id: str, now: Clock = utc_now) -> "DeconstructionJob":
        return cls(
            id=str(uuid.uuid4()),
            submission_id=submission_id,
            status=JobStatus.QUEUED,
            created_at=now(),
        )

    @classmethod
    def rehydrate(
        cls,
        id: str,
        submission_id: str,
        status: int,
        created_at: datetime,
        retry_count: int,
        raw_content: str | None,
        cleaned_markdown: str | None,
        analysis_json: str | None,
        last_error: str | None,
        completed_at: datetime | None,
    ) -> "DeconstructionJob":
        """Rebuild a stored job. Only the persistence layer should call this."""
        return cls(
            id=id,
            submission_id=submission_id,
            status=JobStatus(status),
            created_at=created_at,
            retry_count=retry_count,
            raw_content=raw_content,
            cleaned_markdown=cleaned_markdown,
            analysis_json=analysis_json,
            last_error=last_error,
            completed_at=completed_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def can_transition_to(self, new_status: JobStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def transition_to(
        self, new_status: JobStatus, now: Clock = utc_now, strict: bool = False
    ) -> None:
        """
        Move the job to new_status.

        Permissive by default: any status may follow any other, and entering a
        terminal status stamps completed_at again even if it was already set.
        With strict=True the move is checked against ALLOWED_TRANSITIONS and
        IllegalTransitionError is raised for anything else.
        """
        if strict and not self.can_transition_to(new_status):
            raise IllegalTransitionError(self.status, new_status)
        self.status = new_status
        if new_status in TERMINAL_JOB_STATUSES:
            self.completed_at = now()
        else:
            self.completed_at = None

    # Setters overwrite; keeping artifacts append-only is up to the caller.
    def set_raw_content(self, content: str) -> None:
        self.raw_content = content

    def set_cleaned_markdown(self, markdown: str) -> None:
        self.cleaned_markdown = markdown

    def set_analysis_result(self, analysis_json: str) -> None:
        self.analysis_json = analysis_json

    def record_error(self, message: str) -> None:
        """Overwrite last_error and bump retry_count. Status is left alone."""
        self.last_error = message
        self.retry_count += 1
