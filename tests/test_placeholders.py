# ============================================================================
# PLACEHOLDER LOOKUP TESTS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Tests - Scoped overlay and configuration lookup
# PURPOSE: Verify resolution order, helpers and scope restoration
# ============================================================================
"""
Placeholder Lookup Tests

Run with:
    pytest tests/test_placeholders.py -v
"""

import threading
from datetime import datetime

import pytest

from services.placeholders import ConfigLookup, current_placeholders, placeholder_scope


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def lookup(tmp_path):
    (tmp_path / "snippet.txt").write_text('say "hi"\nbye', encoding="utf-8")
    return ConfigLookup(
        properties={"app.name": "from-property", "shared": "property"},
        environ={"APP_PORT": "8080", "exact.key": "exact", "shared": "env"},
        resource_roots=[str(tmp_path)],
    )


# ============================================================================
# SCOPE
# ============================================================================

class TestPlaceholderScope:
    """Tests for placeholder_scope."""

    def test_empty_outside_scope(self):
        assert current_placeholders() == {}

    def test_visible_inside_scope(self):
        with placeholder_scope({"a": "1"}):
            assert current_placeholders() == {"a": "1"}
        assert current_placeholders() == {}

    def test_nested_scope_restores_outer(self):
        with placeholder_scope({"a": "outer"}):
            with placeholder_scope({"a": "inner"}):
                assert current_placeholders()["a"] == "inner"
            assert current_placeholders()["a"] == "outer"

    def test_restored_on_failure(self):
        with placeholder_scope({"a": "outer"}):
            with pytest.raises(RuntimeError):
                with placeholder_scope({"a": "inner"}):
                    raise RuntimeError("boom")
            assert current_placeholders() == {"a": "outer"}
        assert current_placeholders() == {}

    def test_scope_is_thread_bound(self):
        seen = []
        with placeholder_scope({"a": "1"}):
            worker = threading.Thread(target=lambda: seen.append(dict(current_placeholders())))
            worker.start()
            worker.join()
        assert seen == [{}]

    def test_scope_copies_input(self):
        source = {"a": "1"}
        with placeholder_scope(source):
            source["a"] = "2"
            assert current_placeholders()["a"] == "1"


# ============================================================================
# LOOKUP
# ============================================================================

class TestConfigLookup:
    """Tests for ConfigLookup resolution order."""

    def test_overlay_wins(self, lookup):
        with placeholder_scope({"app.name": "overlay"}):
            assert lookup("app.name") == "overlay"

    def test_property(self, lookup):
        assert lookup("app.name") == "from-property"

    def test_property_before_environment(self, lookup):
        assert lookup("shared") == "property"

    def test_environment_exact_key(self, lookup):
        assert lookup("exact.key") == "exact"

    def test_environment_upper_snake(self, lookup):
        assert lookup("app.port") == "8080"
        assert lookup("app-port") == "8080"

    def test_unknown(self, lookup):
        assert lookup("nope") is None

    def test_property_accessor(self, lookup):
        assert lookup.property("app.name") == "from-property"
        assert lookup.property("nope", "d") == "d"


# ============================================================================
# HELPERS
# ============================================================================

class TestHelpers:
    """Tests for built-in lookup helpers."""

    def test_timestamp(self, lookup):
        assert lookup("timestamp").isdigit()
        assert len(lookup("timestamp")) >= 13
        assert lookup("timestampSec").isdigit()

    def test_date(self, lookup):
        assert lookup("date:%Y") == str(datetime.now().year)

    def test_now(self, lookup):
        assert datetime.fromisoformat(lookup("nowUTC")).tzinfo is not None
        assert datetime.fromisoformat(lookup("now")).tzinfo is not None

    def test_inline_file(self, lookup):
        assert lookup("kubehive-inline-file:snippet.txt") == 'say "hi"\nbye'

    def test_json_inline_file(self, lookup):
        assert lookup("kubehive-json-inline-file:snippet.txt") == 'say \\"hi\\"\\nbye'

    def test_quote_escaped_inline_file(self, lookup):
        assert lookup("kubehive-quote-escaped-inline-file:snippet.txt") == 'say \\"hi\\"\\\\nbye'

    def test_missing_inline_file(self, lookup):
        assert lookup("kubehive-inline-file:missing.txt") is None

    def test_absolute_inline_file(self, lookup, tmp_path):
        path = tmp_path / "snippet.txt"
        assert lookup(f"kubehive-inline-file:{path}") == 'say "hi"\nbye'
