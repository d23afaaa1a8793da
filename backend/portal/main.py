from contextlib import asynccontextmanager
from functools import lru_cache
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from portal.api.routers.accounts import build_accounts_router
from portal.api.routers.dashboard import build_dashboard_router
from portal.api.routers.proposals import build_proposals_router
from portal.api.routers.system import build_system_router
from portal.config import settings
from portal.db import init_db
from portal.embeddings import EmbeddingService
from portal.evaluator import BedrockEvaluationClient
from portal.notifications import EmailNotifier
from portal.observability import bind_request_id, configure_logging, normalize_request_id, sanitize_for_logging
from portal.pipeline import ProposalEvaluationPipeline
from portal.version import APP_VERSION

logger = logging.getLogger("portal.api")


@lru_cache(maxsize=1)
def _cached_embedding_service() -> EmbeddingService:
    return EmbeddingService.from_settings(settings)


def get_embedding_service() -> EmbeddingService:
    return _cached_embedding_service()


@lru_cache(maxsize=1)
def _cached_evaluation_client() -> BedrockEvaluationClient:
    return BedrockEvaluationClient(settings=settings)


def get_evaluation_pipeline() -> ProposalEvaluationPipeline:
    return ProposalEvaluationPipeline(
        settings=settings,
        embedding_service=get_embedding_service(),
        evaluation_client=_cached_evaluation_client(),
    )


def get_notifier() -> EmailNotifier:
    return EmailNotifier(settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    configure_logging(settings.log_level)
    logger.info("application_startup", extra={"event": "application_startup", "environment": settings.app_env})
    init_db()
    yield
    logger.info("application_shutdown", extra={"event": "application_shutdown"})


def create_app() -> FastAPI:
    cors_origins = settings.cors_origins_list
    if settings.cors_allow_credentials and any(origin == "*" for origin in cors_origins):
        raise RuntimeError("Invalid CORS_ORIGINS: wildcard '*' is not allowed when credentials are enabled.")

    app = FastAPI(title=settings.app_name, version=APP_VERSION, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Authorization", "Content-Type", settings.request_id_header],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        request_id = normalize_request_id(request.headers.get(settings.request_id_header))
        request.state.request_id = request_id
        fields = {"request_id": request_id, "method": request.method, "path": request.url.path}
        started = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        with bind_request_id(request_id):
            logger.info(
                "request_started",
                extra={
                    "event": "request_started",
                    **fields,
                    "query": sanitize_for_logging(dict(request.query_params)),
                    "client_ip": request.client.host if request.client else None,
                },
            )
            try:
                response = await call_next(request)
            except Exception:
                logger.exception(
                    "request_failed",
                    extra={"event": "request_failed", **fields, "duration_ms": elapsed_ms()},
                )
                raise

            response.headers[settings.request_id_header] = request_id
            logger.info(
                "request_completed",
                extra={
                    "event": "request_completed",
                    **fields,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms(),
                },
            )
            return response

    # Late-bound getters so tests can monkeypatch the module-level factories.
    app.include_router(build_system_router(get_embedding_service=lambda: get_embedding_service()))
    app.include_router(build_accounts_router())
    app.include_router(
        build_proposals_router(
            get_evaluation_pipeline=lambda: get_evaluation_pipeline(),
            get_notifier=lambda: get_notifier(),
        )
    )
    app.include_router(build_dashboard_router())
    return app


app = create_app()


def run() -> None:
    uvicorn.run(app, host=settings.app_host, port=settings.app_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
