# ============================================================================
# VERSION - KUBEHIVE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# ============================================================================
"""
Version information for kubehive.

This is the single source of truth for the application version.
Manifests may restrict the versions able to deploy them (requirements).
"""
# Version format: major.minor.patch
__version__ = "1.0.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Build metadata
BUILD_DATE = "2026-10-19"

EPOCH = 1
CODENAME = "kubehive"
