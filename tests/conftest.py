"""Shared fixtures: fake request, counting driver and an isolated Application factory."""

from __future__ import annotations

from typing import Any, Callable, Optional

import pytest

from appframe.app import Application
from appframe.config import Settings
from appframe.infrastructure.capabilities import DATABASE, Capabilities
from appframe.infrastructure.database import HandleRegistry
from appframe.infrastructure.request import RequestAdapter


class FakeRequest(RequestAdapter):
    """In-memory request adapter."""

    def __init__(
        self,
        url: str = "http://example.com/cgi-bin/app.cgi",
        params: Optional[dict[str, str]] = None,
        cookies: Optional[dict[str, str]] = None,
        host: str = "example.com",
        persistent: bool = False,
    ) -> None:
        super().__init__()
        self._url = url
        self._params = params or {}
        self._cookies = cookies or {}
        self._host = host
        self.persistent = persistent
        self.written: list[str] = []
        self.header_calls = 0

    def url(self) -> str:
        return self._url

    def param(self, name: str) -> Optional[str]:
        return self._params.get(name)

    def cookie(self, name: str) -> Optional[str]:
        return self._cookies.get(name)

    def host(self) -> Optional[str]:
        return self._host

    def remote_host(self) -> Optional[str]:
        return "127.0.0.1"

    def script_dir(self) -> str:
        return "/srv/cgi-bin"

    def write(self, text: str) -> None:
        self.written.append(text)

    def header(self, *args: Any, **kwargs: Any) -> str:
        self.header_calls += 1
        return super().header(*args, **kwargs)

    @property
    def output(self) -> str:
        return "".join(self.written)


class CountingDriver:
    """Database driver double that counts connection attempts."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: list[tuple[str, Optional[str], Optional[str], dict[str, Any]]] = []

    def connect(
        self,
        dsn: str,
        username: Optional[str],
        password: Optional[str],
        **options: Any,
    ) -> object:
        self.calls.append((dsn, username, password, options))
        if self.error is not None:
            raise self.error
        return object()


@pytest.fixture
def registry() -> HandleRegistry:
    return HandleRegistry()


@pytest.fixture
def driver() -> CountingDriver:
    return CountingDriver()


@pytest.fixture
def capabilities(driver: CountingDriver) -> Capabilities:
    caps = Capabilities.empty()
    caps.configure(DATABASE, driver)
    return caps


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def make_app(
    registry: HandleRegistry, capabilities: Capabilities, settings: Settings
) -> Callable[..., Application]:
    def _make(config: Optional[dict[str, Any]] = None, **kwargs: Any) -> Application:
        kwargs.setdefault("request", FakeRequest())
        kwargs.setdefault("registry", registry)
        kwargs.setdefault("capabilities", capabilities)
        kwargs.setdefault("settings", settings)
        return Application(config or {}, **kwargs)

    return _make


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
