# ============================================================================
# PATCH ENGINE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - JSON-Patch application and descriptor interpolation
# PURPOSE: Turn a loaded descriptor into its final, deployable content
# ============================================================================
"""
Patch Engine

Prepares a loaded descriptor:
1. Renders .j2 template descriptors (Jinja2)
2. Applies every patch whose predicate matches `name` or `name.extension`,
   in order, optionally interpolating content and patch body
3. Interpolates the result when the descriptor asks for it

Patches target descriptors through a predicate compiled once per patch:
- "*"              matches everything
- "regex:<expr>"   full-match regular expression
- a value with "*" full-match regular expression
- anything else    exact name

A patch that fails on raw content is retried once after forcing the
interpolation of the descriptor: many patches target placeholders which
are not valid JSON/YAML before substitution.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Mapping, Optional, Sequence, Tuple

import jsonpatch
import jsonpointer
import yaml

from core.errors import ConfigurationError, PatchApplicationError
from core.logging import log_context
from core.models import Alveolus, LoadedDescriptor, Patch
from orchestrator.engine.conditions import ConditionEvaluator
from orchestrator.engine.substitutor import Substitutor
from orchestrator.engine.templates import TEMPLATE_EXTENSION, TemplateRenderer, get_renderer
from services.placeholders import placeholder_scope

logger = logging.getLogger(__name__)

REGEX_PREFIX = "regex:"

_PATCH_ERRORS = (
    ValueError,
    TypeError,
    yaml.YAMLError,
    jsonpatch.JsonPatchException,
    jsonpointer.JsonPointerException,
)


# ============================================================================
# PREDICATES
# ============================================================================

def compile_predicate(descriptor_name: str) -> Callable[[str], bool]:
    """
    Compile a descriptor name pattern into a predicate.

    Raises:
        ConfigurationError: If the regular expression is invalid
    """
    if descriptor_name == "*":
        return lambda name: True
    try:
        if descriptor_name.startswith(REGEX_PREFIX):
            pattern = re.compile(descriptor_name[len(REGEX_PREFIX):])
            return lambda name: pattern.fullmatch(name) is not None
        if "*" in descriptor_name:
            pattern = re.compile(descriptor_name)
            return lambda name: pattern.fullmatch(name) is not None
    except re.error as e:
        raise ConfigurationError(f"Invalid patch predicate '{descriptor_name}': {e}") from e
    return lambda name: name == descriptor_name


@dataclass(frozen=True)
class CompiledPatch:
    """A patch with its predicate compiled once."""
    patch: Patch
    predicate: Callable[[str], bool] = field(compare=False)

    @classmethod
    def of(cls, patch: Patch) -> "CompiledPatch":
        return cls(patch=patch, predicate=compile_predicate(patch.descriptor_name))

    def matches(self, descriptor: LoadedDescriptor) -> bool:
        name = descriptor.configuration.name
        return self.predicate(name) or self.predicate(f"{name}.{descriptor.extension}")

    @property
    def key(self) -> str:
        """Structural identity (target, flags and body)."""
        return json.dumps(self.patch.to_dict(), sort_keys=True, default=str)


def merge_patches(inherited: Sequence[CompiledPatch], patches: Iterable[Patch]) -> Tuple[CompiledPatch, ...]:
    """
    Append new patches to inherited ones.

    Patches accumulate: several patches on the same target all apply,
    inherited first. A patch structurally equal to one already present
    is dropped so it is never applied twice.
    """
    result: List[CompiledPatch] = list(inherited)
    seen = {p.key for p in result}
    for patch in patches:
        compiled = CompiledPatch.of(patch)
        if compiled.key in seen:
            continue
        seen.add(compiled.key)
        result.append(compiled)
    return tuple(result)


# ============================================================================
# ENGINE
# ============================================================================

class PatchEngine:
    """
    Applies patches and interpolation to loaded descriptors.

    Never mutates its input, always returns a new LoadedDescriptor.
    """

    def __init__(
        self,
        substitutor: Substitutor,
        condition_evaluator: Optional[ConditionEvaluator] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        self.substitutor = substitutor
        self.condition_evaluator = condition_evaluator or ConditionEvaluator()
        self.renderer = renderer or get_renderer()

    def prepare(
        self,
        alveolus: Optional[Alveolus],
        descriptor: LoadedDescriptor,
        patches: Sequence[CompiledPatch],
        placeholders: Mapping[str, str],
        execution_id: Optional[str] = None,
    ) -> LoadedDescriptor:
        """
        Prepare a descriptor for deployment.

        The placeholders are visible to every lookup made on this thread
        while preparing, and the previous overlay is restored afterwards.

        Args:
            alveolus: Alveolus owning the descriptor
            descriptor: Loaded descriptor
            patches: Compiled patches available to this alveolus
            placeholders: Merged placeholders
            execution_id: Current execution id

        Returns:
            Prepared LoadedDescriptor

        Raises:
            PatchApplicationError: If a patch can't be applied even after interpolation
        """
        with placeholder_scope(placeholders), log_context(descriptor=descriptor.configuration.name):
            return self._prepare(alveolus, descriptor, patches, placeholders, execution_id)

    def _prepare(
        self,
        alveolus: Optional[Alveolus],
        descriptor: LoadedDescriptor,
        patches: Sequence[CompiledPatch],
        placeholders: Mapping[str, str],
        execution_id: Optional[str],
    ) -> LoadedDescriptor:
        if descriptor.extension == TEMPLATE_EXTENSION:
            descriptor = self.renderer.render(
                alveolus, descriptor, placeholders, self.substitutor_lookup, execution_id
            )

        def interpolate(text: str) -> str:
            return self.substitutor.replace(text, alveolus, descriptor, execution_id)

        content = descriptor.content
        interpolated = False

        for compiled in (p for p in patches if p.matches(descriptor)):
            patch = compiled.patch
            if patch.interpolate and not interpolated:
                content = interpolate(content)
                interpolated = True

            if patch.include_if is not None and patch.include_if.conditions \
                    and not self.condition_evaluator.test(patch.include_if):
                logger.debug(f"Skipping patch {patch.descriptor_name} (includeIf)")
                continue

            if patch.patch is None:
                continue

            operations = self._operations(descriptor, patch, interpolate)
            try:
                content = _apply(operations, content, descriptor.extension)
            except _PATCH_ERRORS as e:
                if interpolated:
                    raise PatchApplicationError(descriptor.configuration.name, str(e)) from e
                logger.debug(
                    f"Patch on {descriptor.configuration.name} failed ({e}), "
                    f"retrying with interpolated content"
                )
                content = interpolate(content)
                interpolated = True
                try:
                    content = _apply(operations, content, descriptor.extension)
                except _PATCH_ERRORS as retry_error:
                    raise PatchApplicationError(descriptor.configuration.name, str(retry_error)) from retry_error

        if descriptor.configuration.interpolate and not interpolated:
            content = interpolate(content)

        return descriptor.with_content(content)

    def substitutor_lookup(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Lookup going through the substitutor (nested placeholders included)."""
        placeholder = "{{" + key + (":-" + default if default is not None else "") + "}}"
        value = self.substitutor.replace(placeholder)
        if default is None and value == key:
            return None
        return value

    def _operations(self, descriptor: LoadedDescriptor, patch: Patch, interpolate: Callable[[str], str]) -> list:
        if not patch.interpolate:
            return patch.patch
        # interpolate the patch too, if not desired the patch can be split in 2
        body = interpolate(json.dumps(patch.patch, default=str))
        try:
            return json.loads(body)
        except ValueError as e:
            raise PatchApplicationError(
                descriptor.configuration.name, f"interpolated patch is not valid JSON: {e}"
            ) from e


def _apply(operations: list, content: str, extension: str) -> str:
    """Parse content (YAML normalized to JSON), apply the JSON-Patch, dump JSON."""
    text = content.strip()
    structure = json.loads(text) if extension == "json" else yaml.safe_load(text)
    return json.dumps(jsonpatch.apply_patch(structure, operations), default=str)


__all__ = [
    "CompiledPatch",
    "PatchEngine",
    "compile_predicate",
    "merge_patches",
]
