import pytest

from lexiflow.db.connection import run_migrations
from lexiflow.repositories.job_repository import JobRepository
from lexiflow.repositories.submission_repository import SubmissionRepository


@pytest.fixture
def db_path(tmp_path):
    path = str(tmp_path / "lexiflow.db")
    run_migrations(path)
    return path


@pytest.fixture
def submission_repository(db_path):
    return SubmissionRepository(db_path)


@pytest.fixture
def job_repository(db_path):
    return JobRepository(db_path)
