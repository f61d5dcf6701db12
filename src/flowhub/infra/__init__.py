"""Infrastructure connections (DB, Docker, exports)."""

from flowhub.infra.database import (
    close_db,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
)
from flowhub.infra.docker import close_docker, get_docker_client
from flowhub.infra.exports import LogExportStore
from flowhub.infra.store import SQLInstanceStore

__all__ = [
    # DB
    "init_db",
    "close_db",
    "get_engine",
    "get_session",
    "get_session_factory",
    # Docker
    "get_docker_client",
    "close_docker",
    # Stores
    "SQLInstanceStore",
    "LogExportStore",
]
