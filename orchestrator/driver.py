# ============================================================================
# DEPLOYMENT DRIVER
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - apply / delete commands
# PURPOSE: Wire resolver, awaiter and Kubernetes client into commands
# ============================================================================
"""
Deployment Driver

apply:
    1. Resolve the root alveoli (and apply exclusion overlays)
    2. Traverse every root concurrently
    3. Apply each prepared descriptor once (labels injected), then await it

delete:
    1. Resolve the root alveoli the same way
    2. Traverse every root collecting descriptors, nothing is sent yet
    3. Delete collected descriptors in reverse order (owners first), then
       await each one with the `delete` command

Every failure of every root is reported (AggregateDeploymentError).

Usage:
    async with HttpKubeClient() as kube:
        driver = create_driver(kube)
        await driver.apply(manifest="deploy/kubehive/manifest.json")
"""

import asyncio
import re
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from core.config import get_defaults
from core.contracts import Command
from core.logging import ComponentType, get_logger, log_checkpoint, log_context
from core.models import Alveolus, AlveolusContext, LoadedDescriptor, ManifestAndAlveolus
from infrastructure.kube_client import KubeClient
from orchestrator.awaiter import ConditionAwaiter
from orchestrator.engine.conditions import ConditionEvaluator
from orchestrator.engine.patches import PatchEngine
from orchestrator.engine.substitutor import Substitutor
from orchestrator.futures import gather_all
from orchestrator.resolver import AUTO, SKIP, AlveolusResolver
from services.archive_service import ArchiveCache, ArchiveReader
from services.manifest_service import ManifestService
from services.placeholders import ConfigLookup

logger = get_logger(__name__, ComponentType.DRIVER)

LABEL_PREFIX = "kubehive"
NONE = "none"

_INVALID_LABEL_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_LABEL_EDGES = re.compile(r"^[^A-Za-z0-9]+|[^A-Za-z0-9]+$")


def sanitize_label(value: str) -> str:
    """Kubernetes label value: 63 chars max, alphanumeric ends, [-_.] inside."""
    sanitized = _INVALID_LABEL_CHARS.sub(".", value)[:63]
    return _LABEL_EDGES.sub("", sanitized)


def find_version(alveolus: Alveolus) -> str:
    """Explicit version, else the last segment of group:artifact:version."""
    if alveolus.version:
        return alveolus.version
    segments = alveolus.name.split(":")
    if len(segments) >= 3 and segments[-1]:
        return segments[-1]
    return "unknown"


@dataclass
class DeploymentResult:
    """What a command did."""
    execution_id: str
    command: str
    roots: List[str] = field(default_factory=list)
    descriptors: List[LoadedDescriptor] = field(default_factory=list)

    @property
    def descriptor_names(self) -> List[str]:
        return [d.name for d in self.descriptors]


class DeploymentDriver:
    """Runs apply and delete over alveoli graphs."""

    def __init__(
        self,
        kube: KubeClient,
        resolver: AlveolusResolver,
        awaiter: Optional[ConditionAwaiter] = None,
        archive_reader: Optional[ArchiveReader] = None,
    ):
        self.kube = kube
        self.resolver = resolver
        self.awaiter = awaiter or ConditionAwaiter(kube)
        self.archive_reader = archive_reader or ArchiveReader(resolver.manifest_service)

    def _new_cache(self) -> ArchiveCache:
        return ArchiveCache(reader=self.archive_reader)

    async def _roots(
        self,
        from_: str,
        manifest: str,
        alveolus: str,
        excluded_locations: str,
        excluded_descriptors: str,
        cache: ArchiveCache,
    ) -> List[ManifestAndAlveolus]:
        roots = await self.resolver.find_root_alveoli(from_, manifest, alveolus, cache)
        return [it.exclude(excluded_locations, excluded_descriptors) for it in roots]

    # ------------------------------------------------------------------
    # APPLY
    # ------------------------------------------------------------------

    async def apply(
        self,
        from_: str = AUTO,
        manifest: str = SKIP,
        alveolus: str = AUTO,
        excluded_locations: str = NONE,
        excluded_descriptors: str = NONE,
        inject_timestamp: bool = True,
        inject_metadata: bool = True,
        timeout_seconds: Optional[float] = None,
        execution_id: Optional[str] = None,
    ) -> DeploymentResult:
        """
        Deploy root alveoli and their dependencies.

        Args:
            from_: Archive location, `auto` for the resource roots
            manifest: Inline manifest or manifest path, `skip` to ignore
            alveolus: Alveolus name or `auto`
            excluded_locations: Comma separated locations to skip or `none`
            excluded_descriptors: Comma separated descriptor names to skip or `none`
            inject_timestamp: Add the kubehive.timestamp label
            inject_metadata: Add the kubehive.root.alveolus.* labels
            timeout_seconds: Await timeout per descriptor
            execution_id: Run identifier (generated when missing)

        Returns:
            DeploymentResult listing applied descriptors

        Raises:
            AggregateDeploymentError: If any root failed
        """
        execution_id = execution_id or uuid.uuid4().hex
        with log_context(execution_id=execution_id, command=Command.APPLY.value):
            result = await self._apply(
                from_, manifest, alveolus, excluded_locations, excluded_descriptors,
                inject_timestamp, inject_metadata, timeout_seconds, execution_id,
            )
        logger.info(f"Applied {len(result.descriptors)} descriptor(s) of {', '.join(result.roots) or 'no alveolus'}")
        return result

    async def _apply(
        self,
        from_: str,
        manifest: str,
        alveolus: str,
        excluded_locations: str,
        excluded_descriptors: str,
        inject_timestamp: bool,
        inject_metadata: bool,
        timeout_seconds: Optional[float],
        execution_id: str,
    ) -> DeploymentResult:
        result = DeploymentResult(execution_id=execution_id, command=Command.APPLY.value)
        cache = self._new_cache()
        roots = await self._roots(from_, manifest, alveolus, excluded_locations, excluded_descriptors, cache)
        result.roots = [it.alveolus.name for it in roots]
        seen: Dict[Tuple[str, str], "asyncio.Future[None]"] = {}

        async def await_ready(descriptor: LoadedDescriptor) -> None:
            await self.awaiter.await_descriptor(Command.APPLY.value, descriptor, timeout_seconds)

        async def apply_root(root: ManifestAndAlveolus) -> None:
            labels = self.create_labels(root.alveolus, inject_timestamp, inject_metadata)

            async def apply_descriptor(ctx: AlveolusContext, descriptor: LoadedDescriptor) -> None:
                await self.kube.apply(descriptor.content, descriptor.extension, labels)
                result.descriptors.append(descriptor)

            await self.resolver.execute_on_alveolus(
                root.manifest, root.alveolus,
                on_descriptor=apply_descriptor,
                cache=cache,
                awaiter=await_ready,
                execution_id=execution_id,
                prefix="Deploying",
                seen=seen,
            )

        await gather_all([apply_root(root) for root in roots], message="Apply failed")
        log_checkpoint("apply_completed", {"execution_id": execution_id, "descriptors": len(result.descriptors)})
        return result

    def create_labels(self, alveolus: Alveolus, inject_timestamp: bool, inject_metadata: bool) -> Dict[str, str]:
        labels: Dict[str, str] = {}
        if inject_timestamp:
            labels[f"{LABEL_PREFIX}.timestamp"] = str(int(time.time() * 1000))
        if inject_metadata:
            labels[f"{LABEL_PREFIX}.root.alveolus.version"] = sanitize_label(find_version(alveolus))
            labels[f"{LABEL_PREFIX}.root.alveolus.name"] = sanitize_label(alveolus.name)
        return labels

    # ------------------------------------------------------------------
    # DELETE
    # ------------------------------------------------------------------

    async def delete(
        self,
        from_: str = AUTO,
        manifest: str = SKIP,
        alveolus: str = AUTO,
        excluded_locations: str = NONE,
        excluded_descriptors: str = NONE,
        grace_period_seconds: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        execution_id: Optional[str] = None,
    ) -> DeploymentResult:
        """
        Delete the descriptors of root alveoli and their dependencies.

        Descriptors are deleted in reverse traversal order so owners go
        first, then each one is awaited with the delete command.

        Returns:
            DeploymentResult listing deleted descriptors

        Raises:
            AggregateDeploymentError: If any root failed
        """
        execution_id = execution_id or uuid.uuid4().hex
        with log_context(execution_id=execution_id, command=Command.DELETE.value):
            result = await self._delete(
                from_, manifest, alveolus, excluded_locations, excluded_descriptors,
                grace_period_seconds, timeout_seconds, execution_id,
            )
        logger.info(f"Deleted {len(result.descriptors)} descriptor(s) of {', '.join(result.roots) or 'no alveolus'}")
        return result

    async def _delete(
        self,
        from_: str,
        manifest: str,
        alveolus: str,
        excluded_locations: str,
        excluded_descriptors: str,
        grace_period_seconds: Optional[int],
        timeout_seconds: Optional[float],
        execution_id: str,
    ) -> DeploymentResult:
        result = DeploymentResult(execution_id=execution_id, command=Command.DELETE.value)
        cache = self._new_cache()
        roots = await self._roots(from_, manifest, alveolus, excluded_locations, excluded_descriptors, cache)
        result.roots = [it.alveolus.name for it in roots]
        seen: Dict[Tuple[str, str], "asyncio.Future[None]"] = {}
        collected: List[LoadedDescriptor] = []

        async def collect(ctx: AlveolusContext, descriptor: LoadedDescriptor) -> None:
            collected.append(descriptor)

        await gather_all(
            [
                self.resolver.execute_on_alveolus(
                    root.manifest, root.alveolus,
                    on_descriptor=collect,
                    cache=cache,
                    execution_id=execution_id,
                    prefix="Deleting",
                    seen=seen,
                )
                for root in roots
            ],
            message="Delete failed",
        )

        collected.reverse()
        for descriptor in collected:
            await self.kube.delete(descriptor.content, descriptor.extension, grace_period_seconds)
            result.descriptors.append(descriptor)

        await gather_all(
            [self.awaiter.await_descriptor(Command.DELETE.value, d, timeout_seconds) for d in collected],
            message="Deletion not completed",
        )
        log_checkpoint("delete_completed", {"execution_id": execution_id, "descriptors": len(result.descriptors)})
        return result


# ============================================================================
# FACTORY
# ============================================================================

def create_driver(
    kube: KubeClient,
    properties: Optional[Mapping[str, str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    resource_roots: Optional[List[str]] = None,
) -> DeploymentDriver:
    """
    Build a driver with the default stack.

    Args:
        kube: Kubernetes client
        properties: Explicit properties (placeholders and SYSTEM_PROPERTY conditions)
        environ: Environment (defaults to os.environ)
        resource_roots: Resource roots (defaults to KUBEHIVE_RESOURCE_ROOTS)
    """
    roots = resource_roots if resource_roots is not None else list(get_defaults().resolver.resource_roots)
    lookup = ConfigLookup(properties=properties, environ=environ, resource_roots=roots)
    evaluator = ConditionEvaluator(environ=environ, properties=lookup.properties)
    manifest_service = ManifestService(lookup=lookup, resource_roots=roots)
    engine = PatchEngine(Substitutor(lookup), condition_evaluator=evaluator)
    resolver = AlveolusResolver(engine, manifest_service=manifest_service, condition_evaluator=evaluator)
    return DeploymentDriver(kube, resolver)


__all__ = [
    "DeploymentDriver",
    "DeploymentResult",
    "create_driver",
    "find_version",
    "sanitize_label",
]
