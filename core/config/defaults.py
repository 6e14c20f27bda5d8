# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for awaiting, substitution, resolution and
#          the Kubernetes client
# ============================================================================
"""
Configuration Defaults

Provides defaults for the deployment engine.
These can be overridden via environment variables.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides (KUBEHIVE_ prefix)
- Type-safe access
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AwaiterDefaults:
    """
    Defaults for descriptor readiness polling.

    Increasing the retry interval reduces the pressure on the
    Kubernetes API (rate limiting).
    """
    retry_interval_ms: int = 500
    descriptor_await_timeout_ms: int = 60000

    @property
    def retry_interval_seconds(self) -> float:
        return self.retry_interval_ms / 1000.0

    @property
    def descriptor_await_timeout_seconds(self) -> float:
        return self.descriptor_await_timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "AwaiterDefaults":
        """Create from environment variables."""
        return cls(
            retry_interval_ms=int(os.getenv("KUBEHIVE_AWAIT_RETRY_INTERVAL_MS", 500)),
            descriptor_await_timeout_ms=int(os.getenv("KUBEHIVE_DESCRIPTOR_AWAIT_TIMEOUT_MS", 60000)),
        )


@dataclass(frozen=True)
class SubstitutorDefaults:
    """Defaults for placeholder substitution."""
    # Guard against placeholder cycles
    max_iterations: int = 25

    @classmethod
    def from_env(cls) -> "SubstitutorDefaults":
        """Create from environment variables."""
        return cls(
            max_iterations=int(os.getenv("KUBEHIVE_SUBSTITUTOR_MAX_ITERATIONS", 25)),
        )


@dataclass(frozen=True)
class ResolverDefaults:
    """
    Defaults for manifest and descriptor resolution.

    Resource roots play the role of a classpath: each root may contain
    kubehive/manifest.json and kubehive/kubernetes/<descriptor>.yaml.
    """
    resource_roots: Tuple[str, ...] = field(default_factory=lambda: (os.getcwd(),))
    local_repository: str = str(Path.home() / ".m2" / "repository")
    resource_prefix: str = "kubehive"

    @classmethod
    def from_env(cls) -> "ResolverDefaults":
        """Create from environment variables."""
        roots = os.getenv("KUBEHIVE_RESOURCE_ROOTS")
        return cls(
            resource_roots=tuple(r for r in roots.split(os.pathsep) if r) if roots else (os.getcwd(),),
            local_repository=os.getenv(
                "KUBEHIVE_LOCAL_REPOSITORY", str(Path.home() / ".m2" / "repository")
            ),
        )


@dataclass(frozen=True)
class KubeDefaults:
    """Defaults for the Kubernetes HTTP client."""
    api_server: str = "http://localhost:8001"
    token: Optional[str] = None
    namespace: str = "default"
    verify_ssl: bool = True
    dry_run: bool = False
    timeout_seconds: float = 30.0
    delete_grace_period_seconds: int = -1

    @classmethod
    def from_env(cls) -> "KubeDefaults":
        """Create from environment variables."""
        return cls(
            api_server=os.getenv("KUBEHIVE_KUBE_API", "http://localhost:8001"),
            token=os.getenv("KUBEHIVE_KUBE_TOKEN"),
            namespace=os.getenv("KUBEHIVE_KUBE_NAMESPACE", "default"),
            verify_ssl=_env_bool("KUBEHIVE_KUBE_VERIFY_SSL", True),
            dry_run=_env_bool("KUBEHIVE_DRY_RUN", False),
            timeout_seconds=float(os.getenv("KUBEHIVE_KUBE_TIMEOUT_SEC", 30.0)),
            delete_grace_period_seconds=int(os.getenv("KUBEHIVE_DELETE_GRACE_PERIOD_SEC", -1)),
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    awaiter: AwaiterDefaults = field(default_factory=AwaiterDefaults)
    substitutor: SubstitutorDefaults = field(default_factory=SubstitutorDefaults)
    resolver: ResolverDefaults = field(default_factory=ResolverDefaults)
    kube: KubeDefaults = field(default_factory=KubeDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            awaiter=AwaiterDefaults.from_env(),
            substitutor=SubstitutorDefaults.from_env(),
            resolver=ResolverDefaults.from_env(),
            kube=KubeDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get global defaults instance."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "AwaiterDefaults",
    "SubstitutorDefaults",
    "ResolverDefaults",
    "KubeDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
