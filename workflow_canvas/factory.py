"""Application factory for creating FastAPI instances."""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import Engine, text
from sqlalchemy.orm import sessionmaker

from .api.endpoints import init_dependencies, router
from .config import AppConfig, get_config, validate_config
from .core.exceptions import PersistenceError, WorkflowCanvasError
from .core.execution_tracker import ExecutionTracker
from .core.logging import get_logger, setup_logging
from .core.middleware import (
    ErrorHandlingMiddleware,
    PerformanceMonitoringMiddleware,
    workflow_canvas_error_handler,
)
from .core.runner import StepHandlerRegistry, WorkflowRunner
from .core.templates import StepTemplateCatalog, builtin_workflow_templates, get_step_catalog
from .storage.database import create_database_engine, create_tables
from .storage.migrations import run_migrations
from .storage.workflow_store import SqlWorkflowStore

INTERRUPTED_REASON = "Interrupted by service restart"


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.engine: Optional[Engine] = None
        self.store: Optional[SqlWorkflowStore] = None
        self.tracker: Optional[ExecutionTracker] = None
        self.runner: Optional[WorkflowRunner] = None
        self.catalog: Optional[StepTemplateCatalog] = None
        self.logger = None


# Global application state
app_state = ApplicationState()


def initialize_database(config: AppConfig, logger) -> Engine:
    """Create the database engine, tables and indexes."""
    try:
        engine = create_database_engine(config.database_url, echo=config.database_echo)
        create_tables(engine)
        logger.info("Database tables created")

        try:
            run_migrations(engine)
        except Exception as e:
            logger.warning(f"Database migrations failed: {str(e)}")

        return engine

    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise


def initialize_core_components(config: AppConfig, engine: Engine, logger,
                               registry: Optional[StepHandlerRegistry] = None) -> tuple:
    """Initialize core application components."""
    try:
        store = SqlWorkflowStore(sessionmaker(autocommit=False, autoflush=False, bind=engine))
        tracker = ExecutionTracker()
        runner = WorkflowRunner(
            tracker,
            registry=registry,
            max_parallel_steps=config.max_parallel_steps,
            step_timeout=config.step_timeout,
            max_concurrent_runs=config.max_concurrent_runs
        )
        catalog = get_step_catalog()

        logger.info("Core components initialized")

        return store, tracker, runner, catalog

    except Exception as e:
        logger.error(f"Core components initialization failed: {e}")
        raise


def restore_execution_history(store: SqlWorkflowStore, tracker: ExecutionTracker, logger) -> int:
    """
    Load stored executions into the tracker.

    Runs that were still active when the service stopped can never finish,
    so they are cancelled and stored again.

    Returns:
        Number of executions restored
    """
    executions = store.load_executions()
    for execution in executions:
        tracker.ingest_execution(execution)
        if not execution.status.is_terminal:
            interrupted = tracker.cancel_execution(execution.id, INTERRUPTED_REASON)
            try:
                store.save_execution(interrupted)
            except PersistenceError as e:
                logger.error(f"Failed to store interrupted execution {execution.id}: {e.message}")

    logger.info(f"Restored {len(executions)} executions from storage")
    return len(executions)


def graceful_shutdown(runner: WorkflowRunner, engine: Engine, logger) -> None:
    """Handle graceful shutdown of application components."""
    logger.info("Shutting down Workflow Canvas")

    try:
        runner.shutdown()
        logger.info("Workflow runner shutdown completed")
    except Exception as e:
        logger.error(f"Error during workflow runner shutdown: {str(e)}")

    engine.dispose()


def create_lifespan_handler(config: AppConfig, registry: Optional[StepHandlerRegistry] = None):
    """Create application lifespan handler."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        logger = setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )

        logger.info(f"Starting {config.app_name} v{config.app_version}")

        try:
            engine = initialize_database(config, logger)
            store, tracker, runner, catalog = initialize_core_components(config, engine, logger, registry)

            app_state.config = config
            app_state.engine = engine
            app_state.store = store
            app_state.tracker = tracker
            app_state.runner = runner
            app_state.catalog = catalog
            app_state.logger = logger

            restore_execution_history(store, tracker, logger)

            init_dependencies(
                store=store,
                tracker=tracker,
                runner=runner,
                catalog=catalog,
                workflow_templates=builtin_workflow_templates(catalog),
                read_only=config.read_only
            )

            logger.info("Application startup completed successfully")

        except Exception as e:
            logger.error(f"Application startup failed: {e}")
            raise

        yield

        # Shutdown
        try:
            graceful_shutdown(runner, engine, logger)
        except Exception as e:
            logger.error(f"Error during graceful shutdown: {e}")

    return lifespan


def create_app(config: Optional[AppConfig] = None, registry: Optional[StepHandlerRegistry] = None) -> FastAPI:
    """
    Create and configure FastAPI application instance.

    Args:
        config: Application configuration; loaded from the environment when omitted
        registry: Step handlers used by the runner; pass-through handlers when omitted
    """
    if config is None:
        config = get_config()

    validate_config(config)

    app = FastAPI(
        title=config.app_name,
        description="Design, validate, run and monitor workflows on a visual canvas",
        version=config.app_version,
        debug=config.debug,
        lifespan=create_lifespan_handler(config, registry)
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )

    app.add_middleware(PerformanceMonitoringMiddleware, slow_request_threshold=config.slow_request_threshold)
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_exception_handler(WorkflowCanvasError, workflow_canvas_error_handler)

    app.include_router(router)

    add_health_endpoints(app, config)

    return app


def add_health_endpoints(app: FastAPI, config: AppConfig) -> None:
    """Add health check endpoints to the application."""
    service = config.app_name.lower().replace(" ", "-")

    @app.get("/")
    async def root():
        """Root endpoint for basic health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Basic health check endpoint."""
        return {"status": "healthy", "service": service, "version": config.app_version}

    @app.get("/health/ready")
    async def readiness_check():
        """Readiness check: the database answers and the runner is up."""
        checks = {}
        try:
            if app_state.engine is None or app_state.runner is None:
                raise RuntimeError("Application components not initialized")
            with app_state.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            checks["database"] = "healthy"
            checks["executions_tracked"] = len(app_state.tracker.list_executions())
            ready = True
        except Exception as e:
            get_logger(__name__).error(f"Readiness check failed: {str(e)}")
            checks["error"] = str(e)
            ready = False

        return JSONResponse(
            status_code=200 if ready else 503,
            content={
                "ready": ready,
                "service": service,
                "checks": checks,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )


def get_app_state() -> ApplicationState:
    """Get the current application state."""
    return app_state
