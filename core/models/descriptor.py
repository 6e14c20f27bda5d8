# ============================================================================
# RUNTIME DESCRIPTOR MODELS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core model - Traversal-time structures
# PURPOSE: Loaded descriptors and the traversal context threaded through
#          recursive alveolus visits
# EXPORTS: LoadedDescriptor, AlveolusContext, ManifestAndAlveolus
# DEPENDENCIES: dataclasses
# ============================================================================
"""
Runtime Descriptor Models

These are NOT persisted. They exist only during one traversal:
- LoadedDescriptor: a Descriptor paired with its fetched content
- AlveolusContext: inherited configuration for the alveolus being visited
- ManifestAndAlveolus: a root entry point, with exclusion overlays
"""

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from core.models.manifest import Alveolus, Descriptor, DescriptorRef, Manifest

if TYPE_CHECKING:
    from orchestrator.engine.patches import CompiledPatch
    from services.archive_service import ArchiveCache


@dataclass(frozen=True)
class LoadedDescriptor:
    """
    A descriptor and its raw content.

    Immutable: preparing a descriptor produces a new instance.
    """
    configuration: Descriptor
    content: str
    extension: str = "yaml"
    uri: Optional[str] = None
    resource: Optional[str] = None

    @property
    def name(self) -> str:
        return self.configuration.name

    def with_content(self, content: str, extension: Optional[str] = None) -> "LoadedDescriptor":
        """Copy with new content (and optionally a new extension)."""
        return replace(self, content=content, extension=extension or self.extension)

    def dedup_key(self) -> Tuple[str, str]:
        """Identity used to process a rendered descriptor once per run."""
        return self.configuration.name, self.content

    def __repr__(self) -> str:
        return f"LoadedDescriptor(name={self.name!r}, extension={self.extension!r}, uri={self.uri!r})"


@dataclass(frozen=True)
class AlveolusContext:
    """
    Traversal state for one alveolus visit.

    Created fresh for every recursive call, never mutated.
    """
    manifest: Manifest
    alveolus: Alveolus
    patches: Tuple["CompiledPatch", ...] = ()
    placeholders: Dict[str, str] = field(default_factory=dict)
    excludes: Tuple[DescriptorRef, ...] = ()
    cache: Optional["ArchiveCache"] = None
    execution_id: Optional[str] = None


@dataclass(frozen=True)
class ManifestAndAlveolus:
    """A root alveolus with the manifest it comes from."""
    manifest: Manifest
    alveolus: Alveolus

    def exclude(self, excluded_locations: str = "none", excluded_descriptors: str = "none") -> "ManifestAndAlveolus":
        """
        Overlay extra exclusions on a shallow copy of the alveolus.

        Args:
            excluded_locations: Comma separated locations, `none` to skip
            excluded_descriptors: Comma separated descriptor names, `none` to skip

        Returns:
            Self when nothing is excluded, else a new pair
        """
        if excluded_locations == "none" and excluded_descriptors == "none":
            return self

        refs = list(self.alveolus.excluded_descriptors)
        if excluded_descriptors != "none":
            refs.extend(
                DescriptorRef(name=it.strip(), location="*")
                for it in excluded_descriptors.split(",") if it.strip()
            )
        if excluded_locations != "none":
            refs.extend(
                DescriptorRef(name="*", location=it.strip())
                for it in excluded_locations.split(",") if it.strip()
            )

        alveolus = self.alveolus.model_copy(update={"excluded_descriptors": refs})
        return ManifestAndAlveolus(manifest=self.manifest, alveolus=alveolus)


__all__ = [
    "LoadedDescriptor",
    "AlveolusContext",
    "ManifestAndAlveolus",
]
