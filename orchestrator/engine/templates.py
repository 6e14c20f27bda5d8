# ============================================================================
# TEMPLATE DESCRIPTOR RENDERING
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Jinja2 rendering of .j2 descriptors
# PURPOSE: Render descriptor templates before patching
# ============================================================================
"""
Template Descriptor Rendering

Descriptors whose resource ends with `.j2` are Jinja2 templates. They are
rendered once, before any patch, and produce YAML (or JSON for
`<name>.json.j2`).

Template variables:
- {{ alveolus.name }}, {{ alveolus.version }}, {{ alveolus.placeholders }}
- {{ descriptor.name }}, {{ descriptor.location }}, {{ descriptor.type }}
- {{ executionId }}
- {{ placeholders.key }} - merged placeholders of the traversal
- {{ placeholder("key", "default") }} - full placeholder lookup

Filters:
- b64encode, b64encode_url

Examples:
    apiVersion: v1
    kind: ConfigMap
    metadata:
      name: {{ alveolus.name | replace(":", "-") }}
    data:
      token: {{ placeholder("app.token") | b64encode }}
"""

import base64
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from jinja2 import Environment, BaseLoader, StrictUndefined, TemplateSyntaxError, UndefinedError

from core.errors import DeploymentError
from core.models import Alveolus, LoadedDescriptor

logger = logging.getLogger(__name__)

TEMPLATE_EXTENSION = "j2"


def _b64encode(value: Any) -> str:
    return base64.b64encode(str(value).encode("utf-8")).decode("ascii")


def _b64encode_url(value: Any) -> str:
    return base64.urlsafe_b64encode(str(value).encode("utf-8")).decode("ascii").rstrip("=")


class TemplateResolutionError(DeploymentError):
    """Raised when a descriptor template cannot be rendered."""
    pass


class TemplateRenderer:
    """
    Jinja2-based renderer for template descriptors.

    Thread-safe, can be reused across multiple renderings.
    """

    def __init__(self):
        self._env = Environment(
            loader=BaseLoader(),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )
        self._env.filters["b64encode"] = _b64encode
        self._env.filters["b64encode_url"] = _b64encode_url

    def render(
        self,
        alveolus: Optional[Alveolus],
        descriptor: LoadedDescriptor,
        placeholders: Mapping[str, str],
        lookup: Callable[[str, Optional[str]], Optional[str]],
        execution_id: Optional[str] = None,
    ) -> LoadedDescriptor:
        """
        Render a template descriptor.

        Args:
            alveolus: Owning alveolus
            descriptor: Descriptor with extension `j2`
            placeholders: Merged traversal placeholders
            lookup: Placeholder lookup for placeholder()
            execution_id: Current execution id

        Returns:
            New LoadedDescriptor with rendered content and real extension

        Raises:
            TemplateResolutionError: If the template cannot be rendered
        """
        def placeholder(key: str, default: Optional[str] = None) -> str:
            value = lookup(key, default)
            if value is None:
                if default is None:
                    raise TemplateResolutionError(f"No value for placeholder '{key}'")
                return default
            return value

        context: Dict[str, Any] = {
            "alveolus": {
                "name": alveolus.name if alveolus else "",
                "version": (alveolus.version or "") if alveolus else "",
                "placeholders": dict(alveolus.placeholders) if alveolus else {},
            },
            "descriptor": {
                "name": descriptor.configuration.name,
                "location": descriptor.configuration.location or "",
                "type": descriptor.configuration.type,
            },
            "executionId": execution_id or "",
            "placeholders": dict(placeholders),
            "placeholder": placeholder,
        }

        try:
            content = self._env.from_string(descriptor.content).render(context)
        except (TemplateSyntaxError, UndefinedError) as e:
            raise TemplateResolutionError(
                f"Failed to render descriptor '{descriptor.configuration.name}': {e}"
            ) from e

        logger.debug(f"Rendered template descriptor {descriptor.configuration.name}")
        return descriptor.with_content(content, extension=rendered_extension(descriptor.resource))


def rendered_extension(resource: Optional[str]) -> str:
    """Extension of a template once rendered (`x.json.j2` -> json)."""
    if resource and resource.endswith(f".json.{TEMPLATE_EXTENSION}"):
        return "json"
    return "yaml"


# ============================================================================
# CONVENIENCE FUNCTIONS
# ============================================================================

_renderer: Optional[TemplateRenderer] = None


def get_renderer() -> TemplateRenderer:
    """Get shared template renderer instance."""
    global _renderer
    if _renderer is None:
        _renderer = TemplateRenderer()
    return _renderer


__all__ = [
    "TemplateRenderer",
    "TemplateResolutionError",
    "TEMPLATE_EXTENSION",
    "get_renderer",
    "rendered_extension",
]
