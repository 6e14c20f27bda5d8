# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for the deployment engine.
"""

from core.config.defaults import (
    AwaiterDefaults,
    SubstitutorDefaults,
    ResolverDefaults,
    KubeDefaults,
    Defaults,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "AwaiterDefaults",
    "SubstitutorDefaults",
    "ResolverDefaults",
    "KubeDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
