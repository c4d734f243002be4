"""
Request Adapters
================

The request/response surface an Application talks to:
- EnvironRequestAdapter: CGI-style, reads os.environ and writes to stdout
- StarletteRequestAdapter: wraps a FastAPI/Starlette Request and buffers
  the response so the web layer can build it afterwards
"""

import os
import sys
from abc import ABC, abstractmethod
from http import HTTPStatus
from typing import Dict, List, Mapping, Optional, Sequence, TextIO
from urllib.parse import parse_qs

from markupsafe import escape
from starlette.requests import Request

DEFAULT_CONTENT_TYPE = "text/html; charset=utf-8"


class RequestAdapter(ABC):
    """Ambient request context plus header and body emission."""

    persistent: bool = False

    def __init__(self):
        self.header_sent = False
        self.status_code = 200
        self.headers: Dict[str, str] = {}
        self.cookies: List[str] = []

    @abstractmethod
    def url(self) -> str:
        """Absolute URL of the running script, without query string."""

    @abstractmethod
    def param(self, name: str) -> Optional[str]:
        """First value of a request parameter."""

    @abstractmethod
    def cookie(self, name: str) -> Optional[str]:
        """Value of an incoming cookie."""

    @abstractmethod
    def host(self) -> Optional[str]:
        """Host name the request was addressed to."""

    @abstractmethod
    def remote_host(self) -> Optional[str]:
        """Address of the client."""

    @abstractmethod
    def script_dir(self) -> str:
        """Directory holding the running script."""

    @abstractmethod
    def write(self, text: str) -> None:
        """Append text to the response body."""

    def header(
        self,
        status: int = 200,
        content_type: str = DEFAULT_CONTENT_TYPE,
        cookies: Sequence[str] = (),
        **extra: str,
    ) -> str:
        """
        Record the response header and return its wire text.

        Returns "" when the header was already emitted.
        """
        if self.header_sent:
            return ""
        self.header_sent = True
        self.status_code = status
        self.headers["Content-Type"] = content_type
        for name, value in extra.items():
            self.headers[name.replace("_", "-").title()] = value
        self.cookies.extend(cookies)
        return self._header_text()

    def _header_text(self) -> str:
        return ""

    def escape_html(self, text: str) -> str:
        return str(escape(text))


class EnvironRequestAdapter(RequestAdapter):
    """CGI request read from the process environment."""

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        stream: Optional[TextIO] = None,
        body: Optional[str] = None,
    ):
        super().__init__()
        self.environ = dict(os.environ if environ is None else environ)
        self.stream = stream or sys.stdout
        self._params = parse_qs(self.environ.get("QUERY_STRING", ""), keep_blank_values=True)
        if body is None and self._is_form_post():
            length = int(self.environ.get("CONTENT_LENGTH") or 0)
            body = sys.stdin.read(length) if length else ""
        if body:
            for name, values in parse_qs(body, keep_blank_values=True).items():
                self._params.setdefault(name, []).extend(values)

    def _is_form_post(self) -> bool:
        return (
            self.environ.get("REQUEST_METHOD", "GET").upper() == "POST"
            and self.environ.get("CONTENT_TYPE", "").startswith("application/x-www-form-urlencoded")
        )

    def url(self) -> str:
        https = self.environ.get("HTTPS", "").lower() in ("on", "1")
        scheme = "https" if https else "http"
        host = self.environ.get("HTTP_HOST")
        if not host:
            host = self.environ.get("SERVER_NAME", "localhost")
            port = self.environ.get("SERVER_PORT", "443" if https else "80")
            if port not in ("80", "443"):
                host = f"{host}:{port}"
        return f"{scheme}://{host}{self.environ.get('SCRIPT_NAME', '')}"

    def param(self, name: str) -> Optional[str]:
        values = self._params.get(name)
        return values[0] if values else None

    def cookie(self, name: str) -> Optional[str]:
        for chunk in self.environ.get("HTTP_COOKIE", "").split(";"):
            key, _, value = chunk.strip().partition("=")
            if key == name:
                return value
        return None

    def host(self) -> Optional[str]:
        host = self.environ.get("HTTP_HOST") or self.environ.get("SERVER_NAME")
        return host.split(":")[0] if host else None

    def remote_host(self) -> Optional[str]:
        return self.environ.get("REMOTE_HOST") or self.environ.get("REMOTE_ADDR")

    def script_dir(self) -> str:
        script = self.environ.get("SCRIPT_FILENAME")
        if script:
            return os.path.dirname(os.path.abspath(script))
        return os.getcwd()

    def write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def _header_text(self) -> str:
        lines = []
        if self.status_code != 200:
            phrase = HTTPStatus(self.status_code).phrase
            lines.append(f"Status: {self.status_code} {phrase}")
        lines.extend(f"{name}: {value}" for name, value in self.headers.items())
        lines.extend(f"Set-Cookie: {cookie}" for cookie in self.cookies)
        return "\r\n".join(lines) + "\r\n\r\n"


class StarletteRequestAdapter(RequestAdapter):
    """Request served by a long-lived ASGI worker; the body is buffered."""

    persistent = True

    def __init__(self, request: Request):
        super().__init__()
        self.request = request
        self._body: List[str] = []

    def url(self) -> str:
        return str(self.request.url.replace(query="", fragment=""))

    def param(self, name: str) -> Optional[str]:
        return self.request.query_params.get(name)

    def cookie(self, name: str) -> Optional[str]:
        return self.request.cookies.get(name)

    def host(self) -> Optional[str]:
        return self.request.url.hostname

    def remote_host(self) -> Optional[str]:
        return self.request.client.host if self.request.client else None

    def script_dir(self) -> str:
        return os.getcwd()

    def write(self, text: str) -> None:
        self._body.append(text)

    def body(self) -> str:
        return "".join(self._body)
