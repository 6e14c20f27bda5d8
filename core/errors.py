# ============================================================================
# ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Foundation - Exceptions raised by the engine
# PURPOSE: Distinguish configuration, patch, timeout and aggregated failures
# ============================================================================
"""
Deployment Errors

- ConfigurationError: the manifest cannot be resolved as written (fatal)
- PatchApplicationError: a patch failed even after forced interpolation
- AwaitTimeoutError: a descriptor did not reach its condition in time
- AggregateDeploymentError: several concurrent tasks failed

Fetch errors (I/O, HTTP) are not wrapped, they propagate as raised.
"""

from typing import List, Optional, Sequence


class DeploymentError(Exception):
    """Base exception for deployment engine errors."""
    pass


class ConfigurationError(DeploymentError):
    """Raised when an alveolus, descriptor, dependency or manifest is invalid or missing."""
    pass


class PatchApplicationError(DeploymentError):
    """Raised when a patch cannot be applied to a descriptor."""

    def __init__(self, descriptor_name: str, message: str):
        self.descriptor_name = descriptor_name
        super().__init__(f"Can't patch descriptor '{descriptor_name}': {message}")


class AwaitTimeoutError(DeploymentError):
    """Raised when an await condition is not met before the deadline."""

    def __init__(self, descriptor_name: str, condition: str):
        self.descriptor_name = descriptor_name
        self.condition = condition
        super().__init__(f"Timeout awaiting {descriptor_name}, condition: {condition}")


class AggregateDeploymentError(DeploymentError):
    """
    Raised by fan-out combinators once every task has settled.

    Holds every failure, not only the first one.
    """

    def __init__(self, errors: Sequence[BaseException], message: Optional[str] = None):
        self.errors: List[BaseException] = list(errors)
        details = "; ".join(f"{type(e).__name__}: {e}" for e in self.errors)
        super().__init__(f"{message or 'Invalid execution'} ({len(self.errors)} failure(s)): {details}")

    def flatten(self) -> List[BaseException]:
        """Leaf errors, unwrapping nested aggregates."""
        result: List[BaseException] = []
        for error in self.errors:
            if isinstance(error, AggregateDeploymentError):
                result.extend(error.flatten())
            else:
                result.append(error)
        return result


__all__ = [
    "DeploymentError",
    "ConfigurationError",
    "PatchApplicationError",
    "AwaitTimeoutError",
    "AggregateDeploymentError",
]
