"""
Unit tests for the serving controller and the bundler build hook.
"""

import io
from pathlib import Path

import pytest

from devserve.controller import BuildHook, ServingController, create_serving
from devserve.lifecycle import LifecycleManager


def local(site: Path, **extra) -> dict:
    options = {"content_base": str(site), "host": "127.0.0.1", "port": 0, "min_workers": 2}
    options.update(extra)
    return options


class RecordingOpener:
    def __init__(self):
        self.opened = []

    def __call__(self, url):
        self.opened.append(url)
        return True


class TestServingController:
    """Tests for ServingController."""

    def test_options_normalized_once(self, site, manager):
        controller = create_serving(local(site), manager=manager)

        assert controller.config.root_directories == (site,)
        assert controller.instance is None
        assert controller.port == 0

    def test_start_and_port(self, site, manager: LifecycleManager):
        controller = ServingController(local(site), manager=manager)

        instance = controller.start_server()

        assert controller.instance is instance
        assert controller.port == instance.port
        assert controller.url == f"http://127.0.0.1:{instance.port}"

    def test_print_resolve_paths(self, site, tmp_path, manager):
        public = tmp_path / "public"
        public.mkdir()
        controller = ServingController(
            local(site, content_base=[str(site), str(public)], port=10001), manager=manager,
        )
        out = io.StringIO()

        controller.print_resolve_paths(out)

        assert out.getvalue().splitlines() == [
            f"\x1b[32mhttp://127.0.0.1:10001\x1b[0m -> {site}",
            f"\x1b[32mhttp://127.0.0.1:10001\x1b[0m -> {public.resolve()}",
        ]

    def test_restart_with_new_options(self, site, manager):
        controller = ServingController(local(site), manager=manager)
        first = controller.start_server()

        second = controller.restart(local(site, headers={"X-Build": "2"}))

        assert second is not first
        assert controller.config.headers == (("X-Build", "2"),)
        assert controller.instance is second

    def test_stop(self, site, manager):
        controller = ServingController(local(site), manager=manager)
        controller.start_server()

        controller.stop()

        assert controller.instance is None


class TestOpenPage:
    @pytest.mark.parametrize("page, expected", [
        (None, "http://127.0.0.1:10001/"),
        ("/docs/", "http://127.0.0.1:10001/docs/"),
        ("docs/index.html", "http://127.0.0.1:10001/docs/index.html"),
        ("https://example.test/app", "https://example.test/app"),
    ])
    def test_page_url(self, site, manager, page, expected):
        controller = ServingController(local(site, port=10001, open_page=page), manager=manager)

        assert controller.page_url() == expected

    def test_open_page_uses_opener(self, site, manager):
        opener = RecordingOpener()
        controller = ServingController(local(site, port=10001), manager=manager)

        url = controller.open_page(opener=opener)

        assert url == "http://127.0.0.1:10001/"
        assert opener.opened == [url]


class TestBuildHook:
    """The server starts once; only the first build prints and opens."""

    def test_starts_server_on_creation(self, site, manager):
        controller = ServingController(local(site), manager=manager)

        BuildHook(controller)

        assert controller.instance is not None

    def test_first_build_only(self, site, manager, monkeypatch):
        controller = ServingController(local(site), manager=manager)
        opener = RecordingOpener()
        monkeypatch.setattr(controller, "open_page", lambda: opener(controller.page_url()))
        hook = BuildHook(controller, open_browser=True)
        out = io.StringIO()

        assert hook.build_complete(out) is True
        assert hook.build_complete(out) is False
        assert hook.build_complete(out) is False

        assert len(out.getvalue().splitlines()) == 1
        assert len(opener.opened) == 1

    def test_quiet_without_verbose_or_open(self, site, manager, monkeypatch):
        controller = ServingController(local(site, verbose=False), manager=manager)
        opened = []
        monkeypatch.setattr(controller, "open_page", lambda: opened.append(True))
        hook = BuildHook(controller)
        out = io.StringIO()

        assert hook.build_complete(out) is True

        assert out.getvalue() == ""
        assert opened == []

    def test_open_option_enables_browser(self, site, manager):
        controller = ServingController(local(site, open=True), manager=manager)

        hook = BuildHook(controller)

        assert hook.open_browser is True
