"""
SQL Statement Directory
=======================

Keeps application SQL in files: `<sqldir>/<name>.sql`. The directory and
the database handle are set once per process by the Application.
"""

from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine import Connection, CursorResult

from appframe.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class SqlDirectory:
    """Loads named SQL statements from a directory and runs them."""

    def __init__(self):
        self.directory: Optional[Path] = None
        self.handle: Optional[Connection] = None
        self._statements: Dict[str, str] = {}

    def set_directory(self, path: str) -> None:
        directory = Path(path)
        if directory != self.directory:
            self._statements.clear()
        self.directory = directory
        logger.debug("SQL directory set", extra={"sqldir": str(directory)})

    def set_handle(self, handle: Connection) -> None:
        self.handle = handle

    def statement(self, name: str) -> str:
        if name not in self._statements:
            if self.directory is None:
                raise RuntimeError("SQL directory not set. Call set_directory() first.")
            self._statements[name] = (self.directory / f"{name}.sql").read_text()
        return self._statements[name]

    def execute(self, name: str, **params: Any) -> CursorResult:
        if self.handle is None:
            raise RuntimeError("SQL directory has no database handle. Call set_handle() first.")
        return self.handle.execute(text(self.statement(name)), params)


directory = SqlDirectory()
