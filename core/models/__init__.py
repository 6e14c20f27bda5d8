# ============================================================================
# MODELS MODULE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Model exports
# PURPOSE: Central export point for manifest and runtime models
# ============================================================================
"""
Models Module - Central Export Point

Manifest models (pydantic) describe what users write.
Runtime models (frozen dataclasses) describe one traversal.
"""

from core.models.manifest import (
    Manifest,
    Requirement,
    Alveolus,
    AlveolusDependency,
    Descriptor,
    DescriptorRef,
    Patch,
    Conditions,
    Condition,
    AwaitConditions,
    AwaitCondition,
)
from core.models.descriptor import LoadedDescriptor, AlveolusContext, ManifestAndAlveolus

__all__ = [
    # Manifest
    "Manifest",
    "Requirement",
    "Alveolus",
    "AlveolusDependency",
    "Descriptor",
    "DescriptorRef",
    "Patch",
    "Conditions",
    "Condition",
    "AwaitConditions",
    "AwaitCondition",
    # Runtime
    "LoadedDescriptor",
    "AlveolusContext",
    "ManifestAndAlveolus",
]
