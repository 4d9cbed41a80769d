import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from lexiflow.models.deconstruction_job import DeconstructionJob, JobStatus
from lexiflow.models.errors import EmptyUrlError, MalformedUrlError
from lexiflow.models.submission import SubmissionStatus
from lexiflow.services.pipeline_service import (
    JobNotFound,
    NotFound,
    PipelineService,
    SubmissionNotFound,
    run_job_in_background,
)
from lexiflow.services.stages import HttpFetcher, StageError

HTML = "<html><head><title>Hello</title></head><body><p>Hello pipeline world</p></body></html>"


def _fetcher(*results):
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(side_effect=list(results))
    return fetcher


@pytest.fixture
def make_service(submission_repository, job_repository):
    def _make(fetcher, **kwargs):
        kwargs.setdefault("retry_backoff_seconds", 0)
        return PipelineService(submission_repository, job_repository, fetcher=fetcher, **kwargs)

    return _make


def test_submit_persists_submission_and_job(make_service, submission_repository, job_repository):
    service = make_service(_fetcher())
    submission, job = service.submit("https://Example.com")

    stored_sub = submission_repository.get(submission.id)
    stored_job = job_repository.get(job.id)
    assert stored_sub.source_url == "https://example.com/"
    assert stored_sub.status == SubmissionStatus.PENDING
    assert stored_job.submission_id == submission.id
    assert stored_job.status == JobStatus.QUEUED


@pytest.mark.parametrize("url, error", [(" ", EmptyUrlError), ("ftp://x.org/", MalformedUrlError)])
def test_submit_rejects_invalid_url(make_service, submission_repository, url, error):
    service = make_service(_fetcher())
    with pytest.raises(error):
        service.submit(url)
    assert submission_repository.list_recent() == []


@pytest.mark.asyncio
async def test_run_completes_job(make_service, submission_repository, job_repository):
    fetcher = _fetcher(HTML)
    service = make_service(fetcher)
    submission, job = service.submit("https://example.com/article")

    result = await service.run(job.id)

    fetcher.fetch.assert_awaited_once_with("https://example.com/article")
    assert result.status == JobStatus.COMPLETED
    stored_job = job_repository.get(job.id)
    assert stored_job.status == JobStatus.COMPLETED
    assert stored_job.completed_at is not None
    assert stored_job.raw_content == HTML
    assert stored_job.cleaned_markdown == "# Hello\n\nHello pipeline world"
    assert json.loads(stored_job.analysis_json) == {"words": 4, "headings": 1}
    assert stored_job.retry_count == 0
    stored_sub = submission_repository.get(submission.id)
    assert stored_sub.status == SubmissionStatus.COMPLETED
    assert stored_sub.processed_at is not None


@pytest.mark.asyncio
async def test_run_retries_failed_stage(make_service, job_repository, submission_repository):
    fetcher = _fetcher(StageError("fetch failed: HTTP 503"), HTML)
    service = make_service(fetcher, max_stage_attempts=3)
    submission, job = service.submit("https://example.com/")

    await service.run(job.id)

    stored_job = job_repository.get(job.id)
    assert fetcher.fetch.await_count == 2
    assert stored_job.status == JobStatus.COMPLETED
    assert stored_job.retry_count == 1
    assert stored_job.last_error == "fetch failed: HTTP 503"
    assert submission_repository.get(submission.id).status == SubmissionStatus.COMPLETED


@pytest.mark.asyncio
async def test_run_fails_after_max_attempts(make_service, job_repository, submission_repository):
    fetcher = _fetcher(*(StageError(f"fetch failed: attempt {i}") for i in range(1, 4)))
    service = make_service(fetcher, max_stage_attempts=3)
    submission, job = service.submit("https://example.com/")

    result = await service.run(job.id)

    assert result.status == JobStatus.FAILED
    stored_job = job_repository.get(job.id)
    assert stored_job.status == JobStatus.FAILED
    assert stored_job.retry_count == 3
    assert stored_job.last_error == "fetch failed: attempt 3"
    assert stored_job.completed_at is not None
    assert stored_job.raw_content is None
    stored_sub = submission_repository.get(submission.id)
    assert stored_sub.status == SubmissionStatus.FAILED
    assert stored_sub.processed_at is not None


@pytest.mark.asyncio
async def test_failed_clean_keeps_raw_content(make_service, job_repository):
    cleaner = MagicMock()
    cleaner.clean.side_effect = StageError("clean failed: no text content")
    service = make_service(_fetcher(HTML), cleaner=cleaner, max_stage_attempts=2)
    _, job = service.submit("https://example.com/")

    await service.run(job.id)

    stored_job = job_repository.get(job.id)
    assert stored_job.status == JobStatus.FAILED
    assert stored_job.raw_content == HTML
    assert stored_job.cleaned_markdown is None
    assert stored_job.retry_count == 2


@pytest.mark.asyncio
async def test_run_resumes_from_current_stage(make_service, job_repository):
    fetcher = _fetcher()
    service = make_service(fetcher, strict_transitions=True)
    _, job = service.submit("https://example.com/")
    job.transition_to(JobStatus.FETCHING)
    job.set_raw_content(HTML)
    job.transition_to(JobStatus.CLEANING)
    job_repository.save(job)

    await service.run(job.id)

    fetcher.fetch.assert_not_awaited()
    stored_job = job_repository.get(job.id)
    assert stored_job.status == JobStatus.COMPLETED
    assert stored_job.raw_content == HTML


@pytest.mark.asyncio
async def test_run_skips_stage_with_existing_artifact(make_service, job_repository):
    fetcher = _fetcher()
    service = make_service(fetcher, strict_transitions=True)
    _, job = service.submit("https://example.com/")
    job.set_raw_content(HTML)
    job_repository.save(job)

    await service.run(job.id)

    fetcher.fetch.assert_not_awaited()
    assert job_repository.get(job.id).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_run_on_terminal_job_is_noop(make_service, job_repository):
    fetcher = _fetcher(HTML)
    service = make_service(fetcher)
    _, job = service.submit("https://example.com/")
    await service.run(job.id)
    first = job_repository.get(job.id)

    again = await service.run(job.id)

    assert again.completed_at == first.completed_at
    assert fetcher.fetch.await_count == 1


@pytest.mark.asyncio
async def test_concurrent_runs_are_serialised(make_service, job_repository):
    fetcher = _fetcher(HTML, HTML)
    service = make_service(fetcher)
    _, job = service.submit("https://example.com/")

    first, second = await asyncio.gather(service.run(job.id), service.run(job.id))

    assert fetcher.fetch.await_count == 1
    assert first.status == JobStatus.COMPLETED
    assert second.status == JobStatus.COMPLETED
    assert job_repository.get(job.id).retry_count == 0


@pytest.mark.asyncio
async def test_run_unknown_job_raises(make_service):
    service = make_service(_fetcher())
    with pytest.raises(JobNotFound):
        await service.run("missing")


@pytest.mark.asyncio
async def test_background_wrapper_logs_crash(make_service, caplog):
    service = make_service(_fetcher())
    await run_job_in_background(service, "missing")
    assert "background task crashed" in caplog.text


@pytest.mark.asyncio
async def test_unexpected_stage_exception_fails_job(make_service, job_repository, submission_repository):
    fetcher = _fetcher(UnicodeError("label empty or too long"))
    service = make_service(fetcher, max_stage_attempts=3)
    submission, job = service.submit("https://example.com/")

    with pytest.raises(UnicodeError):
        await service.run(job.id)

    assert fetcher.fetch.await_count == 1
    stored_job = job_repository.get(job.id)
    assert stored_job.status == JobStatus.FAILED
    assert stored_job.completed_at is not None
    assert stored_job.retry_count == 1
    assert stored_job.last_error == "UnicodeError: label empty or too long"
    stored_sub = submission_repository.get(submission.id)
    assert stored_sub.status == SubmissionStatus.FAILED
    assert stored_sub.processed_at is not None


@pytest.mark.asyncio
async def test_unencodable_host_fails_job(make_service, job_repository, submission_repository):
    service = make_service(HttpFetcher(timeout=1.0), max_stage_attempts=1)
    submission, job = service.submit("http://xn--a.com/")

    result = await service.run(job.id)

    assert result.status == JobStatus.FAILED
    stored_job = job_repository.get(job.id)
    assert stored_job.status == JobStatus.FAILED
    assert stored_job.retry_count == 1
    assert stored_job.last_error.startswith("fetch failed:")
    assert submission_repository.get(submission.id).status == SubmissionStatus.FAILED


@pytest.mark.asyncio
async def test_locks_released_after_runs(make_service):
    service = make_service(_fetcher(*([HTML] * 5)))
    job_ids = [service.submit(f"https://example.com/{i}")[1].id for i in range(5)]

    for job_id in job_ids:
        await service.run(job_id)
    await asyncio.gather(service.run(job_ids[0]), service.run(job_ids[0]))

    assert service._locks == {}


@pytest.mark.asyncio
async def test_lock_released_after_failed_run(make_service):
    service = make_service(_fetcher())
    with pytest.raises(JobNotFound):
        await service.run("missing")
    assert service._locks == {}


@pytest.mark.asyncio
async def test_missing_submission_raises():
    job = DeconstructionJob.create("gone")
    submissions = MagicMock()
    submissions.get.return_value = None
    jobs = MagicMock()
    jobs.get.return_value = job
    service = PipelineService(submissions, jobs, fetcher=_fetcher())

    with pytest.raises(SubmissionNotFound) as exc_info:
        await service.run(job.id)
    assert isinstance(exc_info.value, NotFound)
    assert not isinstance(exc_info.value, JobNotFound)
    assert service._locks == {}
