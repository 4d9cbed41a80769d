import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from lexiflow.models.clock import Clock, utc_now
from lexiflow.models.deconstruction_job import DeconstructionJob, JobStatus
from lexiflow.models.submission import Submission
from lexiflow.repositories.base import AbstractJobRepository, AbstractSubmissionRepository
from lexiflow.services.stages import HttpFetcher, MarkdownCleaner, StageError, WordCountAnalyzer

logger = logging.getLogger(__name__)


class NotFound(Exception):
    pass


class JobNotFound(NotFound):
    pass


class SubmissionNotFound(NotFound):
    pass


@dataclass
class _Stage:
    status: JobStatus
    artifact: str
    run: Callable[[DeconstructionJob], Awaitable[str]]
    store: Callable[[DeconstructionJob, str], None]


class PipelineService:
    """
    Drives a DeconstructionJob through fetch, clean and analyze, and mirrors
    the outcome onto its Submission.

    Runs for the same job id are serialised on a per-job asyncio.Lock, so
    there is at most one in-flight transition per job inside this process.
    """

    def __init__(
        self,
        submissions: AbstractSubmissionRepository,
        jobs: AbstractJobRepository,
        fetcher: HttpFetcher | None = None,
        cleaner: MarkdownCleaner | None = None,
        analyzer: WordCountAnalyzer | None = None,
        max_stage_attempts: int = 3,
        retry_backoff_seconds: float = 1.0,
        strict_transitions: bool = False,
        now: Clock = utc_now,
    ) -> None:
        self._submissions = submissions
        self._jobs = jobs
        self._fetcher = fetcher or HttpFetcher()
        self._cleaner = cleaner or MarkdownCleaner()
        self._analyzer = analyzer or WordCountAnalyzer()
        self._max_stage_attempts = max(1, max_stage_attempts)
        self._retry_backoff_seconds = retry_backoff_seconds
        self._strict = strict_transitions
        self._now = now
        # job id -> (lock, number of runs holding or waiting on it)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._stages = [
            _Stage(JobStatus.FETCHING, "raw_content", self._fetch, DeconstructionJob.set_raw_content),
            _Stage(JobStatus.CLEANING, "cleaned_markdown", self._clean, DeconstructionJob.set_cleaned_markdown),
            _Stage(JobStatus.ANALYZING, "analysis_json", self._analyze, DeconstructionJob.set_analysis_result),
        ]

    def submit(self, url: str) -> tuple[Submission, DeconstructionJob]:
        """Create and persist a submission and its first job. Validation errors propagate."""
        submission = Submission.create(url, now=self._now)
        job = DeconstructionJob.create(submission.id, now=self._now)
        self._submissions.save(submission)
        self._jobs.save(job)
        logger.info(
            "[pipeline] submitted | submission=%s | job=%s | url=%s",
            submission.id,
            job.id,
            submission.source_url,
        )
        return submission, job

    async def run(self, job_id: str) -> DeconstructionJob:
        lock, users = self._locks.get(job_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[job_id] = (lock, users + 1)
        try:
            async with lock:
                return await self._run_locked(job_id)
        finally:
            lock, users = self._locks[job_id]
            if users <= 1:
                del self._locks[job_id]
            else:
                self._locks[job_id] = (lock, users - 1)

    async def _run_locked(self, job_id: str) -> DeconstructionJob:
        job = await asyncio.to_thread(self._jobs.get, job_id)
        if job is None:
            raise JobNotFound(job_id)
        if job.is_terminal:
            logger.info("[pipeline] job already finished | job=%s | status=%s", job.id, job.status.name)
            return job

        submission = await asyncio.to_thread(self._submissions.get, job.submission_id)
        if submission is None:
            raise SubmissionNotFound(f"submission {job.submission_id} for job {job_id}")

        submission.mark_processing()
        await asyncio.to_thread(self._submissions.save, submission)

        for stage in self._stages:
            if job.status > stage.status:
                continue
            if job.status != stage.status:
                await self._transition(job, stage.status)
            if getattr(job, stage.artifact) is not None:
                logger.debug("[pipeline] artifact present, skipping | job=%s | stage=%s", job.id, stage.status.name)
                continue
            try:
                succeeded = await self._run_stage(job, stage)
            except Exception as exc:
                # Not retryable: record it, finish the job, then let it propagate.
                logger.exception("[pipeline] stage crashed | job=%s | stage=%s", job.id, stage.status.name)
                job.record_error(f"{type(exc).__name__}: {exc}")
                await self._fail(job, submission, stage)
                raise
            if not succeeded:
                await self._fail(job, submission, stage)
                return job

        await self._transition(job, JobStatus.COMPLETED)
        submission.mark_completed(now=self._now)
        await asyncio.to_thread(self._submissions.save, submission)
        logger.info("[pipeline] job completed | job=%s | submission=%s", job.id, submission.id)
        return job

    async def _run_stage(self, job: DeconstructionJob, stage: _Stage) -> bool:
        """Run one stage with retries. Returns False once attempts are exhausted."""
        for attempt in range(1, self._max_stage_attempts + 1):
            try:
                artifact = await stage.run(job)
            except StageError as exc:
                job.record_error(str(exc))
                await asyncio.to_thread(self._jobs.save, job)
                logger.warning(
                    "[pipeline] stage failed | job=%s | stage=%s | attempt=%d/%d | error=%s",
                    job.id,
                    stage.status.name,
                    attempt,
                    self._max_stage_attempts,
                    exc,
                )
                if attempt < self._max_stage_attempts and self._retry_backoff_seconds > 0:
                    await asyncio.sleep(self._retry_backoff_seconds * attempt)
                continue
            stage.store(job, artifact)
            await asyncio.to_thread(self._jobs.save, job)
            return True
        return False

    async def _fail(self, job: DeconstructionJob, submission: Submission, stage: _Stage) -> None:
        await self._transition(job, JobStatus.FAILED)
        submission.mark_failed(now=self._now)
        await asyncio.to_thread(self._submissions.save, submission)
        logger.error(
            "[pipeline] job failed | job=%s | stage=%s | attempts=%d | error=%s",
            job.id,
            stage.status.name,
            job.retry_count,
            job.last_error,
        )

    async def _transition(self, job: DeconstructionJob, status: JobStatus) -> None:
        job.transition_to(status, now=self._now, strict=self._strict)
        await asyncio.to_thread(self._jobs.save, job)
        logger.info("[pipeline] transition | job=%s | status=%s", job.id, status.name)

    async def _fetch(self, job: DeconstructionJob) -> str:
        submission = await asyncio.to_thread(self._submissions.get, job.submission_id)
        return await self._fetcher.fetch(submission.source_url)

    async def _clean(self, job: DeconstructionJob) -> str:
        return await asyncio.to_thread(self._cleaner.clean, job.raw_content)

    async def _analyze(self, job: DeconstructionJob) -> str:
        return await asyncio.to_thread(self._analyzer.analyze, job.cleaned_markdown)


async def run_job_in_background(service: PipelineService, job_id: str) -> None:
    """Background task wrapper: a crash is logged, never raised into the server."""
    try:
        await service.run(job_id)
    except Exception:
        logger.exception("[pipeline] background task crashed | job=%s", job_id)
