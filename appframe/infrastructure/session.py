"""
Session Store
=============

Cookie-identified sessions persisted in a SQL table.

The store is configured globally (cookie name, table name, expiration and
database handle) and then hands out one Session per request. A request
carrying a cookie for a live session resumes it; otherwise a fresh session
is created and the cookie is sent back with the response header.
"""

import json
import secrets
import time
from typing import Any, Dict, Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, delete, insert, select, update
from sqlalchemy.engine import Connection

from appframe.infrastructure.request import RequestAdapter
from appframe.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

DEFAULT_COOKIE_NAME = "session"
DEFAULT_TABLE_NAME = "session"
DEFAULT_EXPIRATION = 24 * 60 * 60


class Session:
    """One client's session data."""

    def __init__(self, store: "SessionStore", session_id: str, data: Dict[str, Any], expires: int):
        self.store = store
        self.id = session_id
        self.data = data
        self.expires = expires

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def save(self) -> None:
        self.store.save(self)

    def cookie(self) -> str:
        """Set-Cookie value identifying this session."""
        return (
            f"{self.store.cookie_name}={self.id}; Path=/; "
            f"Max-Age={self.store.expiration}; HttpOnly"
        )


class SessionStore:
    """SQL-backed session store."""

    def __init__(self):
        self.cookie_name = DEFAULT_COOKIE_NAME
        self.table_name = DEFAULT_TABLE_NAME
        self.expiration = DEFAULT_EXPIRATION
        self.handle: Optional[Connection] = None
        self._table: Optional[Table] = None

    def set_cookie_name(self, name: str) -> None:
        self.cookie_name = name

    def set_table_name(self, name: str) -> None:
        if name != self.table_name:
            self._table = None
        self.table_name = name

    def set_expiration(self, seconds: int) -> None:
        self.expiration = int(seconds)

    def set_handle(self, handle: Connection) -> None:
        if handle is not self.handle:
            self._table = None
        self.handle = handle

    @property
    def table(self) -> Table:
        if self._table is None:
            if self.handle is None:
                raise RuntimeError("Session store has no database handle. Call set_handle() first.")
            table = Table(
                self.table_name,
                MetaData(),
                Column("id", String(64), primary_key=True),
                Column("data", Text, nullable=False, default="{}"),
                Column("expires", Integer, nullable=False),
            )
            table.create(self.handle, checkfirst=True)
            self.handle.commit()
            self._table = table
        return self._table

    def new(self, request: RequestAdapter) -> Session:
        """Resume the session named by the request cookie, or start one."""
        now = int(time.time())
        session_id = request.cookie(self.cookie_name)
        if session_id:
            row = self.handle.execute(
                select(self.table.c.data, self.table.c.expires).where(self.table.c.id == session_id)
            ).first()
            if row is not None and row.expires > now:
                return Session(self, session_id, json.loads(row.data), now + self.expiration)
            if row is not None:
                self.handle.execute(delete(self.table).where(self.table.c.id == session_id))

        session = Session(self, secrets.token_hex(16), {}, now + self.expiration)
        self.handle.execute(
            insert(self.table).values(id=session.id, data="{}", expires=session.expires)
        )
        self.handle.commit()
        logger.debug("Session created", extra={"table": self.table_name})
        return session

    def save(self, session: Session) -> None:
        self.handle.execute(
            update(self.table)
            .where(self.table.c.id == session.id)
            .values(data=json.dumps(session.data), expires=session.expires)
        )
        self.handle.commit()


store = SessionStore()
