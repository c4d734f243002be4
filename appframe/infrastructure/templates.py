"""
Template Infrastructure
=======================

Template flavours built on Jinja2:
- Template: a page rendered from a file
- CacheTemplate: a page whose rendered output is kept in a database
  table under a cache key
- EmailTemplate: an RFC 822 message rendered from a file and handed to
  the local sendmail binary
- SmtpEmailTemplate: the same, sent through an SMTP relay

Every flavour shares the protocol the Application relies on:
set_filename(path) -> bool, set_params(...) -> bool, render() -> str
and print(out).
"""

import smtplib
import subprocess
import sys
import time
from email import message_from_string
from email.message import Message
from email.policy import default as default_policy
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from jinja2 import Environment, FileSystemLoader, TemplateError, select_autoescape
from sqlalchemy import Column, Integer, MetaData, String, Table, Text, delete, insert, select
from sqlalchemy.engine import Connection

from appframe.core import TemplateException
from appframe.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

SENDMAIL = "/usr/sbin/sendmail"


class Template:
    """HTML page template."""

    autoescape = True

    def __init__(self):
        self.filename: Optional[Path] = None
        self.params: Dict[str, Any] = {}

    def set_filename(self, path: str) -> bool:
        """Point the template at a file; False when the file does not exist."""
        candidate = Path(path)
        if not candidate.is_file():
            logger.warning("Template file not found", extra={"template": str(path)})
            return False
        self.filename = candidate
        return True

    def set_params(self, *mappings: Mapping[str, Any], **params: Any) -> bool:
        """
        Merge parameters, later values winning.

        Returns False without changing anything when a key cannot be used as
        a template variable name.
        """
        merged: Dict[str, Any] = {}
        for mapping in (*mappings, params):
            merged.update(mapping)
        if not all(isinstance(key, str) and key.isidentifier() for key in merged):
            return False
        self.params.update(merged)
        return True

    add_params = set_params

    def _environment(self) -> Environment:
        return Environment(
            loader=FileSystemLoader(str(self.filename.parent)),
            autoescape=select_autoescape(default=True) if self.autoescape else False,
            keep_trailing_newline=True,
        )

    def render(self) -> str:
        if self.filename is None:
            raise TemplateException("Template has no file. Call set_filename() first.")
        try:
            return self._environment().get_template(self.filename.name).render(self.params)
        except TemplateError as e:
            raise TemplateException(f"Failed to render {self.filename.name}: {e}") from e

    def print(self, out: Optional[Any] = None) -> None:
        """Write the rendered page to `out` (anything with write(), default stdout)."""
        (out or sys.stdout).write(self.render())


class CacheTemplate(Template):
    """
    Template whose output is cached in the database.

    The table is shared process-wide, as is the handle set through
    set_handle(); a handle passed to the constructor overrides it for that
    instance.
    """

    table_name = "template_cache"
    _handle: Optional[Connection] = None
    _table: Optional[Table] = None
    _created_on: Optional[Connection] = None

    def __init__(self, key: str, handle: Optional[Connection] = None):
        super().__init__()
        self.key = key
        self.handle = handle or type(self)._handle

    @classmethod
    def set_handle(cls, handle: Connection) -> None:
        cls._handle = handle

    def _cache_table(self) -> Table:
        cls = type(self)
        if cls._table is None:
            cls._table = Table(
                cls.table_name,
                MetaData(),
                Column("key", String(255), primary_key=True),
                Column("content", Text, nullable=False),
                Column("created", Integer, nullable=False),
            )
        if cls._created_on is not self.handle:
            cls._table.create(self.handle, checkfirst=True)
            self.handle.commit()
            cls._created_on = self.handle
        return cls._table

    def render(self) -> str:
        if self.handle is None:
            raise TemplateException("Cache template has no database handle")
        table = self._cache_table()
        row = self.handle.execute(select(table.c.content).where(table.c.key == self.key)).first()
        self.handle.commit()
        if row is not None:
            return row.content

        content = super().render()
        self.handle.execute(insert(table).values(key=self.key, content=content, created=int(time.time())))
        self.handle.commit()
        return content

    def clear(self) -> None:
        """Drop the cached output for this key."""
        table = self._cache_table()
        self.handle.execute(delete(table).where(table.c.key == self.key))
        self.handle.commit()


class EmailTemplate(Template):
    """Plain-text message template delivered through sendmail."""

    autoescape = False

    def message(self) -> Message:
        return message_from_string(self.render(), policy=default_policy)

    def send(self) -> bool:
        message = self.message()
        if not message["To"]:
            raise TemplateException("Email template rendered without a To header")
        return self._deliver(message)

    def _deliver(self, message: Message) -> bool:
        result = subprocess.run(
            [SENDMAIL, "-t", "-i"],
            input=message.as_bytes(),
            capture_output=True,
        )
        if result.returncode != 0:
            logger.error(
                "sendmail failed",
                extra={"returncode": result.returncode, "stderr": result.stderr.decode(errors="replace")}
            )
            return False
        return True


class SmtpEmailTemplate(EmailTemplate):
    """Message template delivered through an SMTP relay."""

    host: str = "localhost"
    timeout: float = 30.0

    @classmethod
    def set_host(cls, host: str) -> None:
        cls.host = host

    def _deliver(self, message: Message) -> bool:
        try:
            with smtplib.SMTP(self.host, timeout=self.timeout) as smtp:
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("SMTP delivery failed", extra={"mailhost": self.host, "error": str(e)})
            return False
        return True
