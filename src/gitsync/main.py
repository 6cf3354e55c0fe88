"""FastAPI application entry point.

Builds the deployment components once from the settings and the
deployment file, wires them into the HTTP surface and runs the startup
deployments and the poll loop for the lifetime of the app.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gitsync import __version__
from gitsync.api.deployments import router as deployments_router
from gitsync.api.deps import AppContext
from gitsync.api.health import router as health_router
from gitsync.api.metrics import router as metrics_router
from gitsync.api.webhooks import router as webhooks_router
from gitsync.config import Settings, get_settings
from gitsync.core.exceptions import PayloadError, VerificationError
from gitsync.core.logging import setup_logging
from gitsync.deploy.executor import PipelineExecutor, ProcessManagerFactory
from gitsync.deploy.poller import PollScheduler
from gitsync.deploy.reporter import DeploymentReporter
from gitsync.deploy.scheduler import DeploymentScheduler, PipelineRunner
from gitsync.observability.middleware import CorrelationIdMiddleware, PrometheusMetricsMiddleware
from gitsync.observability.tracing import init_tracing, instrument_fastapi
from gitsync.schemas.deployment_config import DeploymentConfig, ProcessManagerConfig
from gitsync.schemas.trigger import DeploymentTrigger, TriggerSource
from gitsync.services.build_runner import ShellCommandRunner
from gitsync.services.config_loader import load_config
from gitsync.services.dependency_installer import DependencyInstaller
from gitsync.services.git_client import GitClient, VersionControl
from gitsync.services.process_manager import ProcessManagerClient

logger = logging.getLogger(__name__)


def build_context(
    settings: Settings,
    config: DeploymentConfig,
    *,
    executor: PipelineRunner | None = None,
    git: VersionControl | None = None,
    process_manager_factory: ProcessManagerFactory | None = None,
) -> tuple[AppContext, ProcessManagerFactory]:
    """Construct the scheduler, reporter, executor and poller from configuration."""
    if process_manager_factory is None:
        timeout = settings.process_manager_timeout_seconds

        def process_manager_factory(pm: ProcessManagerConfig) -> ProcessManagerClient:
            return ProcessManagerClient(pm, timeout_seconds=timeout)

    git = git or GitClient(timeout_seconds=settings.git_timeout_seconds or None)
    if executor is None:
        executor = PipelineExecutor(
            config=config,
            git=git,
            installer=DependencyInstaller(timeout_seconds=settings.install_timeout_seconds or None),
            builder=ShellCommandRunner(timeout_seconds=settings.build_timeout_seconds or None),
            process_manager_factory=process_manager_factory,
        )

    reporter = DeploymentReporter(history_limit=settings.recent_results_limit)
    scheduler = DeploymentScheduler(executor, hooks=[reporter.report])
    poller = None
    if config.polling_enabled:
        poller = PollScheduler(
            config.repos,
            git,
            scheduler,
            interval_seconds=config.polling.interval_seconds,
        )

    context = AppContext(
        settings=settings,
        config=config,
        scheduler=scheduler,
        reporter=reporter,
        poller=poller,
    )
    return context, process_manager_factory


async def check_process_managers(
    config: DeploymentConfig, factory: ProcessManagerFactory
) -> dict[str, bool]:
    """Ping every distinct process manager endpoint. Never blocks startup."""
    endpoints = {config.task_server.url: config.task_server}
    for repo in config.repos:
        pm = config.resolve_process_manager(repo)
        endpoints.setdefault(pm.url, pm)

    reachable: dict[str, bool] = {}
    for url, pm in endpoints.items():
        try:
            async with factory(pm) as client:
                reachable[url] = await client.ping()
        except Exception:
            logger.exception("Process manager check failed", extra={"url": url})
            reachable[url] = False
        if reachable[url]:
            logger.info("Process manager reachable", extra={"url": url})
        else:
            logger.warning(
                "Process manager not reachable, restarts will fail until it is up",
                extra={"url": url},
            )
    return reachable


async def submit_startup_deployments(context: AppContext) -> None:
    for repo in context.config.repos:
        trigger = DeploymentTrigger(
            provider=TriggerSource.STARTUP,
            branch=repo.branch,
            repository=repo.name,
            pusher="system",
        )
        await context.scheduler.submit(repo, trigger)


def create_app(
    settings: Settings | None = None,
    config: DeploymentConfig | None = None,
    *,
    executor: PipelineRunner | None = None,
    git: VersionControl | None = None,
    process_manager_factory: ProcessManagerFactory | None = None,
) -> FastAPI:
    """
    Application factory for creating the FastAPI app.

    Args:
        settings: Process settings, read from the environment when omitted
        config: Deployment file contents, loaded from ``settings.config_path`` when omitted
        executor: Pipeline runner override (tests)
        git: Version-control collaborator override (tests)
        process_manager_factory: Process-manager client factory override (tests)

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    if config is None:
        config = load_config(settings.config_path, settings.example_config_path)

    context, pm_factory = build_context(
        settings,
        config,
        executor=executor,
        git=git,
        process_manager_factory=process_manager_factory,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager for startup/shutdown events."""
        setup_logging(settings)
        logger.info(
            "GitSync starting",
            extra={
                "version": __version__,
                "environment": settings.environment,
                "trigger_mode": config.trigger_mode,
                "repos": [f"{r.name}@{r.branch}" for r in config.repos],
            },
        )

        await check_process_managers(config, pm_factory)
        if settings.startup_deploy:
            await submit_startup_deployments(context)
        if context.poller is not None:
            context.poller.start()

        yield

        logger.info("GitSync shutting down")
        if context.poller is not None:
            await context.poller.stop()
        await context.scheduler.shutdown(settings.shutdown_grace_seconds)
        logger.info("GitSync shutdown complete")

    app = FastAPI(
        title="GitSync",
        description="Push- and poll-driven deployment agent",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.context = context

    app.add_middleware(PrometheusMetricsMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(VerificationError)
    async def verification_error_handler(request: Request, exc: VerificationError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": str(exc)})

    @app.exception_handler(PayloadError)
    async def payload_error_handler(request: Request, exc: PayloadError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Unknown routes and methods answer 404 with a JSON error body."""
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED:
            return JSONResponse(
                status_code=status.HTTP_404_NOT_FOUND, content={"error": "Not found"}
            )
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        """Handle Pydantic validation errors."""
        logger.warning(
            "Request validation failed",
            extra={"errors": exc.errors(), "path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"error": "Invalid request", "detail": exc.errors()},
        )

    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(deployments_router)
    if config.webhook_enabled:
        app.include_router(webhooks_router)

    if settings.tracing_enabled:
        init_tracing("gitsync", settings.otlp_endpoint)
        instrument_fastapi(app)

    return app
