"""Tests for optional capability loading."""

from __future__ import annotations

import importlib

import pytest

from appframe.infrastructure import capabilities as capabilities_module
from appframe.infrastructure.capabilities import (
    DEFAULT_PROVIDERS,
    SESSION,
    TEMPLATE,
    Capabilities,
    CapabilityLoader,
    resolve_reference,
)
from appframe.infrastructure.templates import Template


def test_failed_load_returns_false_twice_with_fresh_error(make_app, capabilities) -> None:
    capabilities.configure(SESSION, "appframe_missing_one:store")
    app = make_app()

    assert app.load_optional_capability(SESSION) is False
    assert "appframe_missing_one" in app.load_error

    capabilities.configure(SESSION, "appframe_missing_two:store")
    assert app.load_optional_capability(SESSION) is False
    assert "appframe_missing_two" in app.load_error
    assert "appframe_missing_one" not in app.load_error


def test_load_error_is_cleared_by_next_successful_call(make_app, capabilities) -> None:
    capabilities.configure(SESSION, "appframe_missing:store")
    capabilities.configure(TEMPLATE, Template)
    app = make_app()

    assert not app.load_optional_capability(SESSION)
    assert app.load_optional_capability(TEMPLATE)
    assert app.load_error is None


def test_failure_is_retried(monkeypatch: pytest.MonkeyPatch) -> None:
    caps = Capabilities.empty()
    caps.configure(TEMPLATE, "appframe.infrastructure.templates:Template")
    loader = CapabilityLoader(caps)
    attempts: list[str] = []
    real_import = importlib.import_module

    def flaky_import(name: str):
        attempts.append(name)
        if len(attempts) == 1:
            raise ImportError("temporarily broken")
        return real_import(name)

    monkeypatch.setattr(capabilities_module.importlib, "import_module", flaky_import)

    assert loader.load(TEMPLATE) is False
    assert loader.load(TEMPLATE) is True
    assert loader.load(TEMPLATE) is True
    assert len(attempts) == 2


def test_loaded_capability_is_shared_and_not_reimported(monkeypatch: pytest.MonkeyPatch) -> None:
    caps = Capabilities.empty()
    caps.configure(TEMPLATE, "appframe.infrastructure.templates:Template")
    attempts: list[str] = []
    real_import = importlib.import_module

    def counting_import(name: str):
        attempts.append(name)
        return real_import(name)

    monkeypatch.setattr(capabilities_module.importlib, "import_module", counting_import)

    assert CapabilityLoader(caps).load(TEMPLATE)
    assert CapabilityLoader(caps).load(TEMPLATE)
    assert attempts == ["appframe.infrastructure.templates"]
    assert caps.loaded(TEMPLATE) is Template


def test_import_failure_does_not_propagate() -> None:
    caps = Capabilities.empty()
    caps.configure(SESSION, "appframe.infrastructure.session:no_such_attribute")
    loader = CapabilityLoader(caps)

    assert loader.get(SESSION) is None
    assert "AttributeError" in loader.load_error


def test_unconfigured_and_unknown_capabilities_fail() -> None:
    loader = CapabilityLoader(Capabilities.empty())

    assert not loader.load(SESSION)
    assert "not configured" in loader.load_error
    assert not loader.load("mystery")
    assert "unknown" in loader.load_error


def test_default_providers_resolve() -> None:
    for identifier, reference in DEFAULT_PROVIDERS.items():
        assert resolve_reference(reference) is not None, identifier


def test_configure_drops_memoized_provider() -> None:
    caps = Capabilities.empty()
    caps.configure(TEMPLATE, Template)
    CapabilityLoader(caps).load(TEMPLATE)

    caps.configure(TEMPLATE, None)

    assert not caps.is_loaded(TEMPLATE)
    assert not CapabilityLoader(caps).load(TEMPLATE)
