# ============================================================================
# ORCHESTRATOR ENGINE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Engine components
# PURPOSE: Substitution, condition evaluation, templates and patches
# ============================================================================
"""
Orchestrator Engine Components

- substitutor: {{key:-default}} placeholder interpolation
- conditions: includeIf and await condition evaluation
- templates: Jinja2 rendering of .j2 descriptors
- patches: JSON-Patch application to prepared descriptors
"""

from orchestrator.engine.substitutor import Substitutor
from orchestrator.engine.conditions import (
    AwaitConditionError,
    AwaitConditionEvaluator,
    ConditionEvaluator,
)
from orchestrator.engine.templates import (
    TemplateRenderer,
    TemplateResolutionError,
    get_renderer,
)
from orchestrator.engine.patches import (
    CompiledPatch,
    PatchEngine,
    compile_predicate,
    merge_patches,
)

__all__ = [
    # Substitution
    "Substitutor",
    # Conditions
    "AwaitConditionError",
    "AwaitConditionEvaluator",
    "ConditionEvaluator",
    # Templates
    "TemplateRenderer",
    "TemplateResolutionError",
    "get_renderer",
    # Patches
    "CompiledPatch",
    "PatchEngine",
    "compile_predicate",
    "merge_patches",
]
