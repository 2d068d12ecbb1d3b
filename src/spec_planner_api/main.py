"""FastAPI application wiring for the spec planner service.

Routes:
- POST /api/v1/tasks: turn a project brief into stories, tasks and risks.
- GET /api/v1/getTasks: the most recent specifications with their items.
- GET /api/v1/health[/{component}]: database and model endpoint probes.

Every failure leaves as ``{"message": ..., "statusCode": ...}``.
"""

from __future__ import annotations

import logging
import traceback
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .app.config import Settings, get_settings
from .app.errors import ApiError, ValidationError
from .app.health import COMPONENTS, HealthProbe
from .app.llm import LLMAdapter, build_llm_adapter
from .app.models import ApiResponse, CreateSpecRequest, ErrorResponse
from .app.pipeline import SpecPlanner
from .app.storage import PostgresSpecStorage, SpecStorage

logger = logging.getLogger(__name__)


def create_app(
    *,
    storage: SpecStorage | None = None,
    llm_adapter: LLMAdapter | None = None,
    settings_override: Settings | None = None,
) -> FastAPI:
    """Application factory.

    Injected ``storage``/``llm_adapter`` are used as-is (tests). Otherwise the
    PostgreSQL storage is built and migrated when the app starts.
    """
    settings = settings_override or get_settings()
    _configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        _ensure_runtime_state(
            app, settings=settings, storage_override=storage, llm_override=llm_adapter
        )
        yield

    app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure_runtime_state(
            app, settings=settings, storage_override=storage, llm_override=llm_adapter
        )

    cors_origins = settings.resolved_cors_origins()
    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    _register_exception_handlers(app, debug=settings.debug)

    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def liveness() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/v1/tasks", status_code=201)
    def create_task(
        request: Request,
        payload: CreateSpecRequest | None = Body(default=None),
    ) -> JSONResponse:
        planner: SpecPlanner = request.app.state.planner
        created = planner.create(payload or CreateSpecRequest())
        envelope = ApiResponse.build(
            201, created.model_dump(mode="json", by_alias=True), "Task created successfully"
        )
        return JSONResponse(status_code=201, content=envelope.to_content())

    @app.get("/api/v1/getTasks")
    def get_tasks(request: Request) -> JSONResponse:
        planner: SpecPlanner = request.app.state.planner
        records = [
            record.model_dump(mode="json", by_alias=True) for record in planner.list_recent()
        ]
        envelope = ApiResponse.build(200, records, "Tasks fetched successfully")
        return JSONResponse(status_code=200, content=envelope.to_content())

    @app.get("/api/v1/health")
    def health_check(request: Request) -> JSONResponse:
        probe: HealthProbe = request.app.state.health
        healthy, status = probe.check()
        status_code = 200 if healthy else 503
        message = "All systems operational" if healthy else "Some systems are down"
        envelope = ApiResponse.build(status_code, status, message)
        return JSONResponse(status_code=status_code, content=envelope.to_content())

    @app.get("/api/v1/health/{component}")
    def component_status(component: str, request: Request) -> JSONResponse:
        if component not in COMPONENTS:
            raise ValidationError("Invalid component")
        probe: HealthProbe = request.app.state.health
        try:
            details = probe.component(component)
        except ApiError as exc:
            envelope = ApiResponse.build(503, None, exc.message)
            return JSONResponse(status_code=503, content=envelope.to_content())
        message = (
            "Database details retrieved" if component == "database" else "LLM connection successful"
        )
        envelope = ApiResponse.build(200, details, message)
        return JSONResponse(status_code=200, content=envelope.to_content())

    return app


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: SpecStorage | None,
    llm_override: LLMAdapter | None,
) -> None:
    if not hasattr(app.state, "storage"):
        if storage_override is None:
            database_url = settings.resolved_database_url()
            if not database_url:
                raise RuntimeError(
                    "Missing database URL. Set SPEC_PLANNER_DATABASE_URL "
                    "or DATABASE_URL before starting the app."
                )
            postgres = PostgresSpecStorage(database_url)
            postgres.migrate()
            app.state.storage = postgres
        else:
            app.state.storage = storage_override

    if not hasattr(app.state, "planner"):
        llm = llm_override or build_llm_adapter(settings)
        app.state.llm_adapter = llm
        app.state.planner = SpecPlanner(
            storage=app.state.storage,
            llm_adapter=llm,
            recent_limit=settings.recent_limit,
        )
        app.state.health = HealthProbe(storage=app.state.storage, llm_adapter=llm)


def _register_exception_handlers(app: FastAPI, *, debug: bool) -> None:
    def render(exc: Exception, message: str, status_code: int) -> JSONResponse:
        body = ErrorResponse(
            message=message,
            status_code=status_code,
            stack="".join(traceback.format_exception(exc)) if debug else None,
        )
        return JSONResponse(
            status_code=status_code,
            content=body.model_dump(by_alias=True, exclude_none=True),
        )

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
        logger.info(
            "api_error path=%s error=%s status=%d message=%s",
            request.url.path,
            type(exc).__name__,
            exc.status_code,
            exc.message,
        )
        return render(exc, exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return render(exc, "Invalid request body", 400)

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error path=%s", request.url.path)
        return render(exc, "Something went wrong", 500)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


# Module-level app for `uvicorn spec_planner_api.main:app`.
app = create_app()
