# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Lookup, manifest and archive services
# PURPOSE: Everything the resolver reads from outside the cluster
# ============================================================================
"""
Services Module

Usage:
    from services import ConfigLookup, ManifestService, ArchiveCache

    lookup = ConfigLookup(properties={"replicas": "3"})
    manifests = ManifestService(lookup=lookup)
    cache = ArchiveCache()
"""

from .placeholders import ConfigLookup, placeholder_scope, current_placeholders
from .manifest_service import ManifestService, check_requirements, compare_version
from .archive_service import (
    Archive,
    ArchiveCache,
    ArchiveReader,
    ArtifactResolver,
    LocalArtifactResolver,
)

__all__ = [
    "ConfigLookup",
    "placeholder_scope",
    "current_placeholders",
    "ManifestService",
    "check_requirements",
    "compare_version",
    "Archive",
    "ArchiveCache",
    "ArchiveReader",
    "ArtifactResolver",
    "LocalArtifactResolver",
]
