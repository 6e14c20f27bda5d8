# ============================================================================
# PLACEHOLDER LOOKUP SERVICE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Service - Configuration lookup backing the substitutor
# PURPOSE: Resolve placeholder keys from the scoped alveolus overlay,
#          built-in helpers, properties and the environment
# ============================================================================
"""
Placeholder Lookup Service

Resolution order for a key:
1. The placeholder overlay of the alveolus being prepared (thread-bound)
2. Built-in helpers (timestamp, now, date:<format>, inline files)
3. Explicit properties (the process property table)
4. Environment variables (exact key, then UPPER_SNAKE form)

The overlay is thread-bound so deep configuration lookups can see the
current alveolus placeholders without threading them through every call.
It is always pushed and restored through `placeholder_scope`.
"""

import json
import logging
import os
import re
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

INLINE_FILE = "kubehive-inline-file:"
QUOTE_ESCAPED_INLINE_FILE = "kubehive-quote-escaped-inline-file:"
JSON_INLINE_FILE = "kubehive-json-inline-file:"

_ENV_NAME = re.compile(r"[^A-Za-z0-9]")


# ============================================================================
# SCOPED OVERLAY
# ============================================================================

_overlay = threading.local()


def current_placeholders() -> Mapping[str, str]:
    """Placeholders active on this thread (empty outside a scope)."""
    return getattr(_overlay, "placeholders", None) or {}


@contextmanager
def placeholder_scope(placeholders: Optional[Mapping[str, str]]) -> Iterator[Mapping[str, str]]:
    """
    Make placeholders visible to lookups on this thread.

    The previous overlay is restored on exit, including on failure.

    Example:
        with placeholder_scope({"replicas": "3"}):
            substitutor.replace("replicas: {{replicas}}")
    """
    previous = getattr(_overlay, "placeholders", None)
    _overlay.placeholders = dict(placeholders or {})
    try:
        yield _overlay.placeholders
    finally:
        if previous is None:
            del _overlay.placeholders
        else:
            _overlay.placeholders = previous


# ============================================================================
# LOOKUP
# ============================================================================

class ConfigLookup:
    """
    Lookup function for the Substitutor.

    Instances are callables: lookup(key, default) -> value or None.
    """

    def __init__(
        self,
        properties: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
        resource_roots: Sequence[str] = (),
    ):
        """
        Args:
            properties: Explicit properties (highest after the overlay)
            environ: Environment mapping (defaults to os.environ)
            resource_roots: Extra directories searched by inline file helpers
        """
        self.properties: Dict[str, str] = dict(properties or {})
        self._environ = environ if environ is not None else os.environ
        self._resource_roots = list(resource_roots)

    def __call__(self, key: str, default: Optional[str] = None) -> Optional[str]:
        overlay = current_placeholders()
        if key in overlay:
            return overlay[key]

        helper = self._helper(key)
        if helper is not None:
            return helper

        if key in self.properties:
            return self.properties[key]

        return self.from_environment(key)

    def property(self, key: str, default: str = "") -> str:
        """Read a property (used by SYSTEM_PROPERTY conditions)."""
        return self.properties.get(key, default)

    def from_environment(self, key: str) -> Optional[str]:
        """Exact key first, then the UPPER_SNAKE form (a.b-c -> A_B_C)."""
        value = self._environ.get(key)
        if value is not None:
            return value
        return self._environ.get(_ENV_NAME.sub("_", key).upper())

    def _helper(self, key: str) -> Optional[str]:
        if key.startswith(INLINE_FILE):
            return self._read_resource(key[len(INLINE_FILE):])
        if key.startswith(QUOTE_ESCAPED_INLINE_FILE):
            content = self._read_resource(key[len(QUOTE_ESCAPED_INLINE_FILE):])
            if content is None:
                return None
            return content.replace('"', '\\"').replace("\n", "\\\\n")
        if key.startswith(JSON_INLINE_FILE):
            content = self._read_resource(key[len(JSON_INLINE_FILE):])
            if content is None:
                return None
            # JSON string literal without its surrounding quotes
            return json.dumps(content)[1:-1]
        if key == "timestamp":
            return str(int(time.time() * 1000))
        if key == "timestampSec":
            return str(int(time.time()))
        if key == "now":
            return datetime.now().astimezone().isoformat()
        if key == "nowUTC":
            return datetime.now(timezone.utc).isoformat()
        if key.startswith("date:"):
            return datetime.now().strftime(key[len("date:"):])
        return None

    def _read_resource(self, name: str) -> Optional[str]:
        path = Path(name)
        if path.is_file():
            return path.read_text(encoding="utf-8")
        for root in self._resource_roots:
            candidate = Path(root) / name
            if candidate.is_file():
                return candidate.read_text(encoding="utf-8")
        logger.debug(f"Inline file not found: {name}")
        return None


__all__ = [
    "ConfigLookup",
    "placeholder_scope",
    "current_placeholders",
]
