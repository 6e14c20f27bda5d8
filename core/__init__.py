# ============================================================================
# CORE MODULE
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core module initialization
# PURPOSE: Export core contracts, models and errors
# ============================================================================

from core.contracts import (
    AwaitConditionType,
    AwaitState,
    Command,
    ConditionOperator,
    ConditionType,
    JsonPointerOperator,
)
from core.errors import (
    AggregateDeploymentError,
    AwaitTimeoutError,
    ConfigurationError,
    DeploymentError,
    PatchApplicationError,
)
from core.models import (
    Manifest,
    Alveolus,
    Descriptor,
    LoadedDescriptor,
    AlveolusContext,
    ManifestAndAlveolus,
)

__all__ = [
    # Enums
    "AwaitConditionType",
    "AwaitState",
    "Command",
    "ConditionOperator",
    "ConditionType",
    "JsonPointerOperator",
    # Errors
    "AggregateDeploymentError",
    "AwaitTimeoutError",
    "ConfigurationError",
    "DeploymentError",
    "PatchApplicationError",
    # Models
    "Manifest",
    "Alveolus",
    "Descriptor",
    "LoadedDescriptor",
    "AlveolusContext",
    "ManifestAndAlveolus",
]
