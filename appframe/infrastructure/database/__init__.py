"""
Database Infrastructure
=======================

Connection descriptors, the process-wide handle registry and the default
database driver.

Handles are opened with SQLAlchemy 2.0 in synchronous mode. A process keeps
one handle per (connection string, username) pair for its whole lifetime:
the registry never evicts, expires or closes an entry.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol, runtime_checkable

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection, make_url

from appframe.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class DatabaseDescriptor:
    """One way to reach a database: connection string plus credentials."""

    dsn: str
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def cache_key(self) -> str:
        return f"{self.dsn};username={self.username or ''}"

    def __repr__(self) -> str:
        return f"DatabaseDescriptor(dsn={self.dsn!r}, username={self.username!r})"


class HandleRegistry:
    """
    Process-wide cache of opened database handles.

    Owned by the process bootstrap and shared by every Application created
    in that process. Not synchronized: one process serves one request at a
    time.
    """

    def __init__(self):
        self._handles: Dict[str, Any] = {}

    def get(self, key: str) -> Optional[Any]:
        return self._handles.get(key)

    def put(self, key: str, handle: Any) -> None:
        self._handles[key] = handle

    def get_or_create(self, key: str, factory: Callable[[], Any]) -> Any:
        """Return the cached handle for `key`, calling `factory` only on a miss."""
        if key in self._handles:
            logger.debug("Handle registry hit", extra={"cache_key": key})
            return self._handles[key]
        handle = factory()
        self._handles[key] = handle
        return handle

    def __contains__(self, key: object) -> bool:
        return key in self._handles

    def __len__(self) -> int:
        return len(self._handles)


_registry: HandleRegistry | None = None


def get_handle_registry() -> HandleRegistry:
    """
    Get or create the registry for this process.

    Returns:
        HandleRegistry: the process singleton
    """
    global _registry
    if _registry is None:
        _registry = HandleRegistry()
    return _registry


@runtime_checkable
class DatabaseDriver(Protocol):
    """Opens database handles. Raises on failure."""

    def connect(
        self,
        dsn: str,
        username: Optional[str],
        password: Optional[str],
        *,
        autocommit: bool = False,
        raise_on_error: bool = True,
    ) -> Any:
        """Open a connection and return the handle."""


class SQLAlchemyDriver:
    """
    Default driver: opens a SQLAlchemy Connection.

    The dsn is a SQLAlchemy URL without credentials, e.g.
    "postgresql+psycopg://db.example.com/app" or "sqlite:///app.db";
    the username and password are merged into it at connect time.
    """

    def __init__(self, **engine_options: Any):
        self._engine_options = engine_options

    def connect(
        self,
        dsn: str,
        username: Optional[str],
        password: Optional[str],
        *,
        autocommit: bool = False,
        raise_on_error: bool = True,
    ) -> Connection:
        url = make_url(dsn)
        if username:
            url = url.set(username=username, password=password or "")

        options = dict(self._engine_options)
        if autocommit:
            options["isolation_level"] = "AUTOCOMMIT"

        # SQLAlchemy always raises on error; there is no silent mode.
        engine = create_engine(url, **options)
        return engine.connect()


driver = SQLAlchemyDriver()
