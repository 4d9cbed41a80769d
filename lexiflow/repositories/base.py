from abc import ABC, abstractmethod

from lexiflow.models.deconstruction_job import DeconstructionJob
from lexiflow.models.submission import Submission


class AbstractSubmissionRepository(ABC):
    @abstractmethod
    def save(self, submission: Submission) -> None:
        """Insert or update a submission keyed by its id."""

    @abstractmethod
    def get(self, submission_id: str) -> Submission | None:
        """Return the submission with the given id, or None."""

    @abstractmethod
    def list_recent(self, limit: int = 50) -> list[Submission]:
        """Return the newest submissions first."""

    @abstractmethod
    def ping(self) -> bool:
        """Return True if the backing store answers a trivial query."""


class AbstractJobRepository(ABC):
    @abstractmethod
    def save(self, job: DeconstructionJob) -> None:
        """Insert or update a job keyed by its id."""

    @abstractmethod
    def get(self, job_id: str) -> DeconstructionJob | None:
        """Return the job with the given id, or None."""

    @abstractmethod
    def list_for_submission(self, submission_id: str) -> list[DeconstructionJob]:
        """Return every job recorded for a submission, oldest first."""
