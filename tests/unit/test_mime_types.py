"""
Unit tests for MIME type resolution.
"""

from devserve.http.mime_types import (
    DEFAULT_MIME_TYPE,
    MimeResolver,
    get_content_type,
    get_mime_type,
    is_text_type,
)


class TestBuiltinTable:
    def test_common_types(self):
        assert get_mime_type("index.html") == "text/html"
        assert get_mime_type("app.JS") == "text/javascript"
        assert get_mime_type("module.wasm") == "application/wasm"

    def test_unknown_extension(self):
        assert get_mime_type("blob.xyz") == DEFAULT_MIME_TYPE
        assert get_mime_type("Makefile") == DEFAULT_MIME_TYPE

    def test_charset_only_on_text(self):
        assert get_content_type("a.css") == "text/css; charset=utf-8"
        assert get_content_type("a.json") == "application/json; charset=utf-8"
        assert get_content_type("a.png") == "image/png"
        assert is_text_type("image/svg+xml")
        assert not is_text_type("application/wasm")


class TestMimeResolver:
    """Tests for user overrides."""

    def test_override_wins(self):
        mime = MimeResolver({".js": "application/x-custom"})

        assert mime.mime_type("/srv/app.js") == "application/x-custom"
        assert mime.mime_type("style.css") == "text/css"

    def test_list_value_uses_first_entry(self):
        mime = MimeResolver({".glsl": ("x-shader/x-fragment", "text/plain")})

        assert mime.mime_type("frag.glsl") == "x-shader/x-fragment"

    def test_override_lookup_is_case_insensitive(self):
        mime = MimeResolver({".WASM": "application/wasm"})

        assert mime.overrides == {".wasm": "application/wasm"}
        assert mime.content_type("Module.Wasm") == "application/wasm"

    def test_empty_list_ignored(self):
        mime = MimeResolver({".bin": ()})

        assert mime.overrides == {}
