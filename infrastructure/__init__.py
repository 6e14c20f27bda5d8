# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Infrastructure - Kubernetes access
# PURPOSE: Kubernetes client interface and httpx implementation
# ============================================================================
"""
Infrastructure module for kubehive.

Usage:
    from infrastructure import HttpKubeClient

    async with HttpKubeClient(api_server="http://localhost:8001") as kube:
        responses = await kube.get_resources(content, "yaml")
"""

from infrastructure.kube_client import (
    DRY_RUN_HEADER,
    HttpKubeClient,
    KubeApiError,
    KubeClient,
    KubeResponse,
    dry_run_response,
)

__all__ = [
    'DRY_RUN_HEADER',
    'HttpKubeClient',
    'KubeApiError',
    'KubeClient',
    'KubeResponse',
    'dry_run_response',
]
