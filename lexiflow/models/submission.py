import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum

from lexiflow.models.clock import Clock, utc_now
from lexiflow.models.urls import normalize_url


class SubmissionStatus(IntEnum):
    PENDING = 0
    PROCESSING = 1
    COMPLETED = 2
    FAILED = 3


TERMINAL_SUBMISSION_STATUSES = {SubmissionStatus.COMPLETED, SubmissionStatus.FAILED}


@dataclass
class Submission:
    """A user's request to deconstruct the page behind a URL."""

    id: str
    source_url: str
    status: SubmissionStatus
    created_at: datetime
    processed_at: datetime | None = None

    @classmethod
    def create(cls, url: str, now: Clock = utc_now) -> "Submission":
        """
        Validate and normalize url, then return a new Pending submission.
        Raises EmptyUrlError or MalformedUrlError.
        """
        source_url = normalize_url(url)
        return cls(
            id=str(uuid.uuid4()),
            source_url=source_url,
            status=SubmissionStatus.PENDING,
            created_at=now(),
        )

    @classmethod
    def rehydrate(
        cls,
        id: str,
        source_url: str,
        status: int,
        created_at: datetime,
        processed_at: datetime | None,
    ) -> "Submission":
        """Rebuild a stored submission. Only the persistence layer should call this."""
        return cls(
            id=id,
            source_url=source_url,
            status=SubmissionStatus(status),
            created_at=created_at,
            processed_at=processed_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SUBMISSION_STATUSES

    # No precondition checks: callers own the ordering of these.
    def mark_processing(self) -> None:
        self.status = SubmissionStatus.PROCESSING

    def mark_completed(self, now: Clock = utc_now) -> None:
        self.status = SubmissionStatus.COMPLETED
        self.processed_at = now()

    def mark_failed(self, now: Clock = utc_now) -> None:
        self.status = SubmissionStatus.FAILED
        self.processed_at = now()
