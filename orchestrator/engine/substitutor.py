# ============================================================================
# PLACEHOLDER SUBSTITUTOR
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Recursive {{ }} placeholder substitution
# PURPOSE: Interpolate descriptors, patches and manifests
# ============================================================================
"""
Placeholder Substitutor

Replaces {{ }} placeholders in text using an injected lookup function.

Supported patterns:
- {{name}}            - value returned by the lookup, or `name` if unknown
- {{name:-default}}   - value returned by the lookup, or `default`
- {{a.{{b}}}}         - nested placeholders, inner one resolved first
- \\{{literal}}        - escaped, never substituted (rendered as {{literal}})

Built-in keys (resolved before the lookup):
- executionId, alveolus.name, alveolus.version, descriptor.name

The lookup may itself call `replace` (re-entrant).
"""

import logging
from typing import Callable, Optional, TYPE_CHECKING

from core.config import get_defaults

if TYPE_CHECKING:
    from core.models import Alveolus, LoadedDescriptor

logger = logging.getLogger(__name__)

# (key, default value) -> value or None when unknown
Lookup = Callable[[str, Optional[str]], Optional[str]]

ESCAPE = "\\"
PREFIX = "{{"
SUFFIX = "}}"
VALUE_DELIMITER = ":-"


class Substitutor:
    """
    Placeholder substitutor.

    Stateless apart from the lookup, safe to share across threads.
    """

    def __init__(self, lookup: Lookup, max_iterations: Optional[int] = None, unescape: bool = True):
        """
        Args:
            lookup: Function resolving a key (and its default) to a value
            max_iterations: Max number of full passes (placeholder cycle guard)
            unescape: Turn \\{{ into {{ once done, disabled for early passes
                whose output is interpolated again later
        """
        self._lookup = lookup
        self.max_iterations = max_iterations or get_defaults().substitutor.max_iterations
        self.unescape = unescape

    def replace(
        self,
        source: Optional[str],
        alveolus: Optional["Alveolus"] = None,
        descriptor: Optional["LoadedDescriptor"] = None,
        execution_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Substitute every placeholder of `source`.

        Args:
            source: Text to interpolate
            alveolus: Alveolus backing alveolus.* keys
            descriptor: Descriptor backing descriptor.name
            execution_id: Value of executionId

        Returns:
            Interpolated text (None if source is None)
        """
        if source is None:
            return None

        current = source
        for _ in range(self.max_iterations):
            previous = current
            current = self._substitute_pass(current, alveolus, descriptor, execution_id)
            if previous == current:
                break
        else:
            logger.warning(f"Placeholder substitution stopped after {self.max_iterations} passes")

        if not self.unescape:
            return current
        return current.replace(ESCAPE + PREFIX, PREFIX)

    def _substitute_pass(
        self,
        text: str,
        alveolus: Optional["Alveolus"],
        descriptor: Optional["LoadedDescriptor"],
        execution_id: Optional[str],
    ) -> str:
        """One left-to-right sweep; values produced here are rescanned next pass."""
        cursor = 0
        while True:
            start = _find_prefix(text, cursor)
            if start < 0:
                return text

            end = text.find(SUFFIX, start + len(PREFIX))
            if end < 0:
                return text

            # Nested placeholder: resolve the innermost one first
            inner = _find_last_prefix(text, start + len(PREFIX), end)
            if inner >= 0:
                start = inner

            key = text[start + len(PREFIX):end]
            value = self._resolve_key(key, alveolus, descriptor, execution_id)

            text = text[:start] + value + text[end + len(SUFFIX):]
            cursor = start + len(value)

    def _resolve_key(
        self,
        key: str,
        alveolus: Optional["Alveolus"],
        descriptor: Optional["LoadedDescriptor"],
        execution_id: Optional[str],
    ) -> str:
        sep = key.find(VALUE_DELIMITER)
        if sep > 0:
            return self._get_or_default(
                key[:sep], key[sep + len(VALUE_DELIMITER):], alveolus, descriptor, execution_id
            )
        return self._get_or_default(key, None, alveolus, descriptor, execution_id)

    def _get_or_default(
        self,
        name: str,
        default: Optional[str],
        alveolus: Optional["Alveolus"],
        descriptor: Optional["LoadedDescriptor"],
        execution_id: Optional[str],
    ) -> str:
        # built-ins only when their source is known, else the lookup decides
        if name == "executionId" and execution_id is not None:
            return execution_id
        if name == "descriptor.name" and descriptor is not None:
            return descriptor.configuration.name
        if alveolus is not None:
            if name == "alveolus.name":
                return alveolus.name
            if name == "alveolus.version":
                return alveolus.version or ""

        try:
            value = self._lookup(name, default)
        except Exception:
            if default is not None:
                return default
            raise

        if value is not None:
            return value
        return default if default is not None else name


def _find_prefix(text: str, start: int) -> int:
    """Index of the first unescaped PREFIX at or after start, -1 if none."""
    while True:
        idx = text.find(PREFIX, start)
        if idx < 0:
            return -1
        if idx == 0 or text[idx - 1] != ESCAPE:
            return idx
        start = idx + 1


def _find_last_prefix(text: str, start: int, end: int) -> int:
    """Index of the last unescaped PREFIX in text[start:end], -1 if none."""
    idx = text.rfind(PREFIX, start, end)
    while idx >= 0:
        if text[idx - 1] != ESCAPE:
            return idx
        idx = text.rfind(PREFIX, start, idx)
    return -1


__all__ = [
    "Substitutor",
    "Lookup",
]
