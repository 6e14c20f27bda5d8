# ============================================================================
# MANIFEST GRAPH RESOLVER
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Recursive alveolus/dependency traversal
# PURPOSE: Walk the alveolus graph, prepare descriptors and execute them in
#          ordering-barrier groups
# ============================================================================
"""
Manifest Graph Resolver

For one alveolus:
1. Merge inherited exclusions, patches and placeholders with its own
   (its own placeholders win)
2. Resolve each included dependency (same manifest, visible manifests or
   archive at `location`) and recurse, chained or in parallel
3. Select its own descriptors (includeIf + exclusions), load them
   (resource roots first, then the archive of their location) and run
   them through the patch engine
4. Rank descriptors into groups closed by `await: true` descriptors and
   execute groups in sequence; inside a group each descriptor is handed to
   the descriptor hook then awaited, concurrently

A (name, rendered content) pair is handed to the descriptor hook once per
run, whatever the number of paths leading to it. Later paths wait for the
first one to apply and await it before going on.

Usage:
    resolver = AlveolusResolver(patch_engine, manifest_service)
    await resolver.execute_on_alveolus(
        manifest, alveolus,
        on_descriptor=apply,
        cache=ArchiveCache(),
        awaiter=wait_ready,
        execution_id="run-1",
    )
"""

import asyncio
import functools
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from core.errors import ConfigurationError
from core.logging import ComponentType, get_logger, log_checkpoint, log_context
from core.models import (
    Alveolus,
    AlveolusContext,
    AlveolusDependency,
    Descriptor,
    DescriptorRef,
    LoadedDescriptor,
    Manifest,
    ManifestAndAlveolus,
)
from orchestrator.engine.conditions import ConditionEvaluator
from orchestrator.engine.patches import PatchEngine, merge_patches
from orchestrator.futures import gather_all
from services.archive_service import ArchiveCache
from services.manifest_service import ManifestService

logger = get_logger(__name__, ComponentType.RESOLVER)

KUBERNETES = "kubernetes"
AUTO = "auto"
SKIP = "skip"

OnAlveolus = Callable[[AlveolusContext], Awaitable[Any]]
OnDescriptor = Callable[[AlveolusContext, LoadedDescriptor], Awaitable[Any]]
Awaiter = Callable[[LoadedDescriptor], Awaitable[Any]]


# ============================================================================
# HELPERS
# ============================================================================

def rank_descriptors(descriptors: List[LoadedDescriptor]) -> List[List[LoadedDescriptor]]:
    """
    Split descriptors into ordering-barrier groups.

    A descriptor with `await: true` closes the current group:
    [A(await), B, C(await), D] -> [[A], [B, C], [D]]
    """
    ranked: List[List[LoadedDescriptor]] = []
    current: List[LoadedDescriptor] = []
    for descriptor in descriptors:
        current.append(descriptor)
        if descriptor.configuration.await_:
            ranked.append(current)
            current = []
    if current:
        ranked.append(current)
    return ranked


def find_extension(name: str, type_: str) -> str:
    """Suffix to append to a descriptor name to get its resource."""
    if type_ != KUBERNETES:
        raise ConfigurationError(f"Unsupported type: '{type_}'")
    if name.endswith((".yaml", ".yml", ".json", ".j2")):
        return ""
    return ".yaml"


def extract_extension(resource: str) -> str:
    """yaml, json or j2 (yml is normalized to yaml)."""
    dot = resource.rfind(".")
    extension = resource[dot + 1:].lower() if dot > 0 else "yaml"
    return "yaml" if extension == "yml" else extension


def _ref_matches(expected: Optional[str], actual: Optional[str]) -> bool:
    if expected is None or expected == "*":
        return True
    if expected.startswith("regex:"):
        return actual is not None and re.fullmatch(expected[len("regex:"):], actual) is not None
    return expected == actual


def merge_excludes(inherited: Tuple[DescriptorRef, ...], excludes: Iterable[DescriptorRef]) -> Tuple[DescriptorRef, ...]:
    """Inherited exclusions followed by new ones, without duplicates."""
    result = list(inherited)
    keys = {(ref.name, ref.location) for ref in result}
    for ref in excludes:
        if (ref.name, ref.location) not in keys:
            keys.add((ref.name, ref.location))
            result.append(ref)
    return tuple(result)


def is_excluded(descriptor: Descriptor, excludes: Tuple[DescriptorRef, ...]) -> bool:
    """Whether a (name, location) exclusion matches the descriptor."""
    return any(
        _ref_matches(ref.location, descriptor.location) and _ref_matches(ref.name, descriptor.name)
        for ref in excludes
    )


@dataclass
class _Traversal:
    """Hooks and per-run state shared by every visit of one traversal."""
    on_alveolus: Optional[OnAlveolus]
    on_descriptor: Optional[OnDescriptor]
    awaiter: Optional[Awaiter]
    cache: ArchiveCache
    execution_id: Optional[str]
    prefix: Optional[str]
    seen: Dict[Tuple[str, str], "asyncio.Future[None]"] = field(default_factory=dict)


# ============================================================================
# RESOLVER
# ============================================================================

class AlveolusResolver:
    """
    Walks alveoli graphs.

    Stateless between runs: per-run state (archive cache, deduplication)
    lives in the traversal.
    """

    def __init__(
        self,
        patch_engine: PatchEngine,
        manifest_service: Optional[ManifestService] = None,
        condition_evaluator: Optional[ConditionEvaluator] = None,
    ):
        self.patch_engine = patch_engine
        self.manifest_service = manifest_service or ManifestService()
        self.condition_evaluator = condition_evaluator or patch_engine.condition_evaluator

    # ------------------------------------------------------------------
    # ROOTS
    # ------------------------------------------------------------------

    async def find_root_alveoli(
        self,
        from_: str = AUTO,
        manifest: str = SKIP,
        alveolus: str = AUTO,
        cache: Optional[ArchiveCache] = None,
    ) -> List[ManifestAndAlveolus]:
        """
        Resolve the alveoli a command starts from.

        Args:
            from_: Archive location (path or coordinates), `auto` for the
                visible manifests
            manifest: Inline manifest or manifest path, `skip` to ignore
            alveolus: Alveolus name, `auto` for every visible alveolus (or
                the single alveolus of `manifest`)
            cache: Archive cache used when reading from an archive

        Raises:
            ConfigurationError: If the alveolus can't be found
        """
        if manifest != SKIP:
            loaded = self.manifest_service.read_manifest(manifest)
            if not loaded.alveoli:
                raise ConfigurationError(f"No alveoli in manifest '{manifest}'")
            name = loaded.alveoli[0].name if len(loaded.alveoli) == 1 and alveolus == AUTO else alveolus
            found = loaded.find_alveolus(name)
            if found is None:
                raise ConfigurationError(f"Didn't find alveolus '{name}' in '{manifest}'")
            return [ManifestAndAlveolus(manifest=loaded, alveolus=found)]

        if alveolus == AUTO:
            logger.info(
                "Auto scanning the resource roots, ensure to set a particular alveolus "
                "if you don't fully control them"
            )
            return [
                ManifestAndAlveolus(manifest=m, alveolus=a)
                for m in self.manifest_service.visible_manifests()
                for a in m.alveoli
            ]

        if from_ is None or from_ == AUTO:
            found = self.manifest_service.find_alveolus_in_visible(alveolus)
            if found is None:
                raise ConfigurationError(f"No alveolus named '{alveolus}' found")
            return [found]

        return [await self.find_alveolus(from_, alveolus, cache or ArchiveCache())]

    async def find_alveolus(self, location: str, name: str, cache: ArchiveCache) -> ManifestAndAlveolus:
        """
        Find an alveolus in the archive at a location.

        Descriptors of the archive without location get the archive one,
        so they can be loaded from it later.
        """
        archive = await cache.load_archive(location)
        for alveolus in archive.manifest.alveoli:
            for descriptor in alveolus.descriptors:
                if descriptor.location is None:
                    descriptor.location = location

        found = archive.manifest.find_alveolus(name)
        if found is None:
            available = ",".join(a.name for a in archive.manifest.alveoli)
            raise ConfigurationError(f"No alveolus '{name}' found, available in '{location}': {available}")
        return ManifestAndAlveolus(manifest=archive.manifest, alveolus=found)

    # ------------------------------------------------------------------
    # TRAVERSAL
    # ------------------------------------------------------------------

    async def execute_on_alveolus(
        self,
        manifest: Manifest,
        alveolus: Alveolus,
        on_alveolus: Optional[OnAlveolus] = None,
        on_descriptor: Optional[OnDescriptor] = None,
        cache: Optional[ArchiveCache] = None,
        awaiter: Optional[Awaiter] = None,
        execution_id: Optional[str] = None,
        prefix: Optional[str] = "Deploying",
        seen: Optional[Dict[Tuple[str, str], "asyncio.Future[None]"]] = None,
    ) -> None:
        """
        Traverse an alveolus and its dependencies.

        Args:
            manifest: Manifest of the alveolus
            alveolus: Root alveolus
            on_alveolus: Hook called before each alveolus is processed
            on_descriptor: Hook called with each prepared descriptor
            cache: Archive cache of the run
            awaiter: Called after on_descriptor for each descriptor
            execution_id: Run identifier (exposed as {{executionId}})
            prefix: Visit log prefix, None to not log visits
            seen: Deduplication map (descriptor key to its processing task)
                to share between several roots of one run

        Raises:
            ConfigurationError: If the graph can't be resolved
            AggregateDeploymentError: If concurrent branches failed
        """
        traversal = _Traversal(
            on_alveolus=on_alveolus,
            on_descriptor=on_descriptor,
            awaiter=awaiter,
            cache=cache or ArchiveCache(),
            execution_id=execution_id,
            prefix=prefix,
            seen=seen if seen is not None else {},
        )
        await self._visit(
            AlveolusContext(
                manifest=manifest,
                alveolus=alveolus,
                cache=traversal.cache,
                execution_id=execution_id,
            ),
            traversal,
        )

    async def _visit(self, ctx: AlveolusContext, traversal: _Traversal) -> None:
        with log_context(alveolus=ctx.alveolus.name):
            await self._traverse(ctx, traversal)

    async def _traverse(self, ctx: AlveolusContext, traversal: _Traversal) -> None:
        alveolus = ctx.alveolus
        if traversal.on_alveolus is not None:
            await traversal.on_alveolus(ctx)
        if traversal.prefix:
            logger.info(f"{traversal.prefix} '{alveolus.name}'")

        current = AlveolusContext(
            manifest=ctx.manifest,
            alveolus=alveolus,
            patches=merge_patches(ctx.patches, alveolus.patches),
            placeholders={**ctx.placeholders, **alveolus.placeholders},
            excludes=merge_excludes(ctx.excludes, alveolus.excluded_descriptors),
            cache=ctx.cache,
            execution_id=ctx.execution_id,
        )

        # dependencies are visited even if every descriptor is excluded
        dependencies = [d for d in alveolus.dependencies if self.condition_evaluator.test(d.include_if)]
        if alveolus.chain_dependencies:
            for dependency in dependencies:
                await self._visit_dependency(current, dependency, traversal)
        else:
            await gather_all(
                [self._visit_dependency(current, d, traversal) for d in dependencies],
                message=f"Dependencies of '{alveolus.name}' failed",
            )

        selected = [
            d for d in alveolus.descriptors
            if self.condition_evaluator.test(d.include_if) and not is_excluded(d, current.excludes)
        ]
        prepared = await gather_all(
            [self._load_and_prepare(current, d) for d in selected],
            message=f"Descriptors of '{alveolus.name}' failed",
        )

        for group in rank_descriptors(prepared):
            await gather_all(
                [self._execute(current, d, traversal) for d in group],
                message=f"Descriptors of '{alveolus.name}' failed",
            )

        log_checkpoint("alveolus_visited", {"alveolus": alveolus.name, "descriptors": len(prepared)})

    async def _visit_dependency(
        self,
        ctx: AlveolusContext,
        dependency: AlveolusDependency,
        traversal: _Traversal,
    ) -> None:
        target = await self._resolve_dependency(ctx.manifest, dependency, traversal.cache)
        await self._visit(
            AlveolusContext(
                manifest=target.manifest,
                alveolus=target.alveolus,
                patches=ctx.patches,
                placeholders=ctx.placeholders,
                excludes=ctx.excludes,
                cache=ctx.cache,
                execution_id=ctx.execution_id,
            ),
            traversal,
        )

    async def _resolve_dependency(
        self,
        manifest: Manifest,
        dependency: AlveolusDependency,
        cache: ArchiveCache,
    ) -> ManifestAndAlveolus:
        if dependency.location is not None:
            return await self.find_alveolus(dependency.location, dependency.name, cache)

        # prefer the same manifest first
        found = manifest.find_alveolus(dependency.name)
        if found is not None:
            return ManifestAndAlveolus(manifest=manifest, alveolus=found)

        visible = self.manifest_service.find_alveolus_in_visible(dependency.name)
        if visible is None:
            raise ConfigurationError(f"No alveolus named '{dependency.name}' found")
        return visible

    async def _execute(self, ctx: AlveolusContext, descriptor: LoadedDescriptor, traversal: _Traversal) -> None:
        key = descriptor.dedup_key()
        task = traversal.seen.get(key)
        if task is not None:
            logger.info(f"{descriptor.name} already processed, waiting for it")
            # a cancelled path must not cancel the processing shared with others
            await asyncio.shield(task)
            return

        task = asyncio.ensure_future(self._process(ctx, descriptor, traversal))
        traversal.seen[key] = task
        await asyncio.shield(task)

    async def _process(self, ctx: AlveolusContext, descriptor: LoadedDescriptor, traversal: _Traversal) -> None:
        if traversal.on_descriptor is not None:
            await traversal.on_descriptor(ctx, descriptor)
        if traversal.awaiter is not None:
            await traversal.awaiter(descriptor)

    # ------------------------------------------------------------------
    # DESCRIPTORS
    # ------------------------------------------------------------------

    async def _load_and_prepare(self, ctx: AlveolusContext, descriptor: Descriptor) -> LoadedDescriptor:
        loaded = await self.load_descriptor(descriptor, ctx.cache, ctx.execution_id)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            functools.partial(
                self.patch_engine.prepare,
                ctx.alveolus,
                loaded,
                ctx.patches,
                ctx.placeholders,
                ctx.execution_id,
            ),
        )

    async def load_descriptor(
        self,
        descriptor: Descriptor,
        cache: ArchiveCache,
        execution_id: Optional[str] = None,
    ) -> LoadedDescriptor:
        """
        Fetch the raw content of a descriptor.

        Resource roots are tried first, then the archive of the
        descriptor location.

        Raises:
            ConfigurationError: If the descriptor can't be found
        """
        type_ = descriptor.type or KUBERNETES
        resource = "/".join((
            self.manifest_service.prefix, type_, descriptor.name + find_extension(descriptor.name, type_),
        ))
        extension = extract_extension(resource)

        local = self.manifest_service.find_resource(resource)
        if local is not None:
            loop = asyncio.get_running_loop()
            content = await loop.run_in_executor(None, functools.partial(Path.read_text, local, encoding="utf-8"))
            return LoadedDescriptor(
                configuration=descriptor, content=content, extension=extension,
                uri=local.as_uri(), resource=resource,
            )

        if not descriptor.location or not descriptor.location.strip():
            raise ConfigurationError(
                f"No location for descriptor '{descriptor.name}' so it will not be downloadable"
            )

        archive = await cache.load_archive(descriptor.location, execution_id)
        content = archive.descriptors.get(resource)
        if content is None:
            raise ConfigurationError(f"No descriptor '{resource}' found in '{descriptor.location}'")
        return LoadedDescriptor(
            configuration=descriptor, content=content, extension=extension,
            uri=f"{archive.location or descriptor.location}!/{resource}", resource=resource,
        )


__all__ = [
    "AlveolusResolver",
    "extract_extension",
    "find_extension",
    "is_excluded",
    "merge_excludes",
    "rank_descriptors",
]
