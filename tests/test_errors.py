"""Tests for the fatal error reporter."""

from __future__ import annotations

from pathlib import Path

import pytest

from appframe.core import FatalErrorLoop, RequestTerminated
from appframe.infrastructure.capabilities import TEMPLATE
from appframe.infrastructure.templates import Template
from conftest import FakeRequest


def test_message_is_html_escaped(make_app) -> None:
    request = FakeRequest()
    app = make_app(request=request)

    with pytest.raises(RequestTerminated) as excinfo:
        app.report_fatal_error("A<B")

    assert "A&lt;B" in excinfo.value.body
    assert "<B" not in request.output
    assert excinfo.value.message == "A<B"


def test_newlines_become_line_breaks(make_app) -> None:
    app = make_app()

    with pytest.raises(RequestTerminated) as excinfo:
        app.report_fatal_error("line1\nline2")

    body = excinfo.value.body
    assert "line1<br>\nline2" in body
    assert "line1\nline2" not in body


def test_header_is_emitted_once_with_error_status(make_app) -> None:
    request = FakeRequest()
    app = make_app(request=request)
    request.header()

    with pytest.raises(RequestTerminated):
        app.report_fatal_error("boom")

    assert request.status_code == 200
    assert request.output == "Internal error: boom<br>\n"


def test_error_template_renders_escaped_message(make_app, capabilities, tmp_path: Path) -> None:
    (tmp_path / "error.html").write_text("<div class='err'>{{ error }}</div>")
    capabilities.configure(TEMPLATE, Template)
    request = FakeRequest()
    app = make_app({"templatedir": str(tmp_path), "error_template": "error.html"}, request=request)

    with pytest.raises(RequestTerminated) as excinfo:
        app.report_fatal_error("A<B\nC")

    assert excinfo.value.body == "<div class='err'>A&lt;B<br>\nC</div>"
    assert request.output == excinfo.value.body
    assert request.status_code == 500


def test_missing_error_template_falls_back_to_plain_message(make_app, capabilities, tmp_path: Path) -> None:
    capabilities.configure(TEMPLATE, Template)
    app = make_app({"templatedir": str(tmp_path), "error_template": "missing.html"})

    with pytest.raises(RequestTerminated) as excinfo:
        app.report_fatal_error("oops")

    assert excinfo.value.body == "Internal error: oops<br>\n"
    assert app.in_error is False


def test_unloadable_template_engine_falls_back(make_app, capabilities) -> None:
    capabilities.configure(TEMPLATE, "appframe_missing_engine:Template")
    app = make_app({"error_template": "error.html"})

    with pytest.raises(RequestTerminated) as excinfo:
        app.report_fatal_error("oops")

    assert excinfo.value.body == "Internal error: oops<br>\n"


def test_reentrant_report_aborts_without_second_body(make_app, capabilities, tmp_path: Path) -> None:
    (tmp_path / "error.html").write_text("{{ error }}")
    request = FakeRequest()

    class ReentrantTemplate(Template):
        def render(self) -> str:
            app.report_fatal_error("while rendering the error page")
            return super().render()

    capabilities.configure(TEMPLATE, ReentrantTemplate)
    app = make_app({"templatedir": str(tmp_path), "error_template": "error.html"}, request=request)

    with pytest.raises(SystemExit) as excinfo:
        app.report_fatal_error("first")

    assert isinstance(excinfo.value, FatalErrorLoop)
    assert excinfo.value.code == FatalErrorLoop.EXIT_CODE
    assert request.header_calls == 1
    assert "first" not in request.output
    assert "while rendering" not in request.output


def test_fatal_error_kind_follows_cause(make_app) -> None:
    app = make_app()

    with pytest.raises(RequestTerminated) as excinfo:
        app.report_fatal_error("plain")

    assert excinfo.value.kind == "fatal"
    assert excinfo.value.__cause__ is None
