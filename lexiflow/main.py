import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lexiflow.api.routes import API_VERSION, router
from lexiflow.config import settings
from lexiflow.db.connection import run_migrations
from lexiflow.repositories.job_repository import JobRepository
from lexiflow.repositories.submission_repository import SubmissionRepository
from lexiflow.services.pipeline_service import PipelineService
from lexiflow.services.stages import HttpFetcher


def _configure_logging() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    _configure_logging()
    logger = logging.getLogger(__name__)
    logger.info(
        "LexiFlow API starting | db=%s | port=%s | env=%s",
        settings.DB_PATH,
        settings.PORT,
        settings.ENVIRONMENT,
    )
    applied = run_migrations(settings.DB_PATH)
    app.state.submission_repository = SubmissionRepository(settings.DB_PATH)
    app.state.job_repository = JobRepository(settings.DB_PATH)
    app.state.pipeline_service = PipelineService(
        app.state.submission_repository,
        app.state.job_repository,
        fetcher=HttpFetcher(timeout=settings.FETCH_TIMEOUT_SECONDS),
        max_stage_attempts=settings.MAX_STAGE_ATTEMPTS,
        retry_backoff_seconds=settings.RETRY_BACKOFF_SECONDS,
        strict_transitions=settings.STRICT_TRANSITIONS,
    )
    logger.info("Database ready | migrations_applied=%d", len(applied))
    yield
    logger.info("LexiFlow API shutting down")


def create_app() -> FastAPI:
    app = FastAPI(
        title="LexiFlow API",
        summary="URL deconstruction: fetch, clean to Markdown, analyze",
        description=(
            "Submit a URL to queue a deconstruction job, then poll the submission "
            "or job for its status and artifacts."
        ),
        version=API_VERSION,
        openapi_tags=[
            {"name": "submissions", "description": "Create and inspect URL submissions"},
            {"name": "jobs", "description": "Deconstruction job status and artifacts"},
            {"name": "system", "description": "Liveness and version"},
        ],
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{field}: {first.get('msg', 'invalid request')}" if field else first.get("msg", "invalid request")
        return JSONResponse(status_code=422, content={"status": "error", "message": message})

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logging.getLogger(__name__).exception("Unhandled exception")
        return JSONResponse(
            status_code=500,
            content={"status": "error", "message": "Internal server error"},
        )

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run("lexiflow.main:app", host="0.0.0.0", port=settings.PORT, log_level=settings.LOG_LEVEL)
