"""Application configuration backed by Pydantic Settings.

All values can be overridden via environment variables prefixed with
``CASUALLY_`` (e.g. ``CASUALLY_PORT=9000``).
"""

from pathlib import Path

from pydantic_settings import BaseSettings


def _default_database_path() -> Path:
    """Return the default database location: ``~/.casually/casually.sqlite3``.

    The parent directory is created by the task store on first use.
    """
    return Path.home() / ".casually" / "casually.sqlite3"


class CasuallySettings(BaseSettings):
    """Central configuration for the Casually task service.

    Attributes:
        host: Network interface to bind the HTTP server to.
        port: TCP port for the HTTP server.
        database_path: SQLite file holding every task and routine section.
        log_level: Root logging level name.
        cors_origins: Origins allowed to call the API from a browser.
    """

    model_config = {"env_prefix": "CASUALLY_"}

    host: str = "0.0.0.0"
    port: int = 8424
    database_path: Path = _default_database_path()
    log_level: str = "INFO"
    cors_origins: list[str] = ["*"]
