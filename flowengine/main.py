"""Main FastAPI application for the workflow engine."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.endpoints import router, init_dependencies
from .config import AppConfig, get_config, validate_config
from .core.logging import setup_logging, get_logger
from .core.middleware import ErrorHandlingMiddleware, RequestLoggingMiddleware
from .core.node_executor import NodeExecutor, NodeServices
from .core.orchestrator import WorkflowExecutor
from .core.recorder import ExecutionRecorder
from .core.workflow_store import WorkflowStore
from .storage.database import configure_database, create_tables, reset_database_engine
from .storage.migrations import run_migrations


def build_components(config: AppConfig, http_client=None) -> WorkflowExecutor:
    """Wire the store, recorder and node executor into a workflow executor."""
    store = WorkflowStore()
    recorder = ExecutionRecorder()
    node_executor = NodeExecutor(NodeServices.from_config(config, http_client=http_client))
    return WorkflowExecutor(store=store, recorder=recorder, node_executor=node_executor)


def create_app(config: Optional[AppConfig] = None, http_client=None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if config is None:
        config = get_config()
    validate_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.log_structured,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        configure_database(config.database_url, echo=config.database_echo)
        create_tables()
        logger.info("Database tables created")
        try:
            run_migrations()
        except Exception as e:
            logger.warning(f"Database migrations failed: {str(e)}")

        executor = build_components(config, http_client=http_client)
        init_dependencies(
            workflow_store=executor.store,
            execution_recorder=executor.recorder,
            workflow_executor=executor
        )
        logger.info("Core components initialized")

        yield

        # Shutdown
        logger.info(f"Shutting down {config.app_name}")
        http = executor.node_executor.services.http_client
        if hasattr(http, "close"):
            http.close()
        reset_database_engine()

    app = FastAPI(
        title=config.app_name,
        description="Executes visually composed workflow graphs and records every step",
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan
    )

    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_methods,
            allow_headers=["*"],
        )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    app.include_router(router)

    @app.get("/")
    async def root():
        """Root endpoint for health check."""
        return {"message": f"{config.app_name} is running", "version": config.app_version}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": config.app_name.lower()}

    return app


if __name__ == "__main__":
    import uvicorn
    from .config import load_config

    app_config = load_config()
    uvicorn.run(create_app(app_config), **app_config.get_uvicorn_config())
