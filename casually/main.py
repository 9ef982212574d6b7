"""FastAPI application entry point for the Casually task service.

This module builds the FastAPI app, opens the SQLite ``TaskStore``, and wires
the shared ``TaskManager`` into every router module.  The server is started
via ``uvicorn`` using the settings from ``casually.config``.
"""

import logging

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from casually.config import CasuallySettings
from casually.routers import health, projects, routines, sections, subtasks, views
from casually.services.task_manager import TaskManager
from casually.services.task_store import TaskStore

logger = logging.getLogger(__name__)

_ROUTER_MODULES = (health, projects, subtasks, routines, sections, views)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the whole service."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def create_app(settings: CasuallySettings | None = None) -> FastAPI:
    """Build and configure the FastAPI application.

    Opens the task store, creates the shared ``TaskManager``, registers all
    API routers and sets up CORS.

    Args:
        settings: Configuration to use.  Loaded from the environment when
            omitted.

    Returns:
        A fully configured ``FastAPI`` application ready to serve.
    """
    settings = settings or CasuallySettings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Casually",
        description="Task-tracking service for projects, subtasks and routines with blocker-aware states",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Shared task manager -- all routers reference the same instance
    store = TaskStore(settings.database_path)
    task_manager = TaskManager(store)

    for module in _ROUTER_MODULES:
        module.set_task_manager(task_manager)
        app.include_router(module.router)

    logger.info("Casually initialised -- database=%s", settings.database_path)
    return app


def main() -> None:
    """Start the Uvicorn server with settings from the environment.

    This is the CLI entry point (``casually`` or ``python -m casually.main``).
    """
    settings = CasuallySettings()
    configure_logging(settings.log_level)
    logger.info("Starting Casually on %s:%d", settings.host, settings.port)
    uvicorn.run(
        "casually.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
