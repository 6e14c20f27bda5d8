# ============================================================================
# MANIFEST MODELS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Core model - Manifest / alveolus / descriptor definitions
# PURPOSE: Define the deployment manifest loaded from JSON or YAML
# EXPORTS: Manifest, Requirement, Alveolus, AlveolusDependency, Descriptor,
#          DescriptorRef, Patch, Conditions, Condition, AwaitConditions,
#          AwaitCondition
# DEPENDENCIES: pydantic, enum
# ============================================================================
"""
Manifest Models

A Manifest is the document users write. It enumerates alveoli:
- What descriptors (Kubernetes resources) each alveolus deploys
- Which other alveoli it depends on
- Patches and placeholders it applies to itself and its dependencies
- Which inherited descriptors it excludes

JSON keys are camelCase, Python attributes snake_case. Both are accepted
on input.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.contracts import (
    AwaitConditionType,
    ConditionOperator,
    ConditionType,
    JsonPointerOperator,
)


class _ManifestModel(BaseModel):
    """Shared configuration for manifest models."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with manifest (camelCase) keys."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ============================================================================
# CONDITIONS
# ============================================================================

class Condition(_ManifestModel):
    """
    A boolean predicate over an environment variable or a property.

    A blank key always evaluates to true.
    """
    type: ConditionType = ConditionType.ENV
    key: Optional[str] = None
    value: str = "true"
    negate: bool = False


class Conditions(_ManifestModel):
    """Conditions combined with ALL (default) or ANY semantics."""
    operator: ConditionOperator = ConditionOperator.ALL
    conditions: List[Condition] = Field(default_factory=list)


class AwaitCondition(_ManifestModel):
    """
    A readiness predicate evaluated against the fetched resource.

    JSON_POINTER compares the value at `pointer` using `operator_type`.
    STATUS_CONDITION matches an entry of /status/conditions whose `type`
    equals `condition_type` and whose `status` equals `value`.
    """
    type: AwaitConditionType = AwaitConditionType.JSON_POINTER
    pointer: str = "/"
    operator_type: JsonPointerOperator = Field(
        default=JsonPointerOperator.EQUALS, alias="operatorType"
    )
    condition_type: Optional[str] = Field(default=None, alias="conditionType")
    value: Optional[str] = None

    def describe(self) -> str:
        """Short human readable form used in logs and timeout errors."""
        if self.type == AwaitConditionType.STATUS_CONDITION:
            return f"status condition {self.condition_type}={self.value}"
        return f"{self.pointer} {self.operator_type.value} {self.value}"


class AwaitConditions(_ManifestModel):
    """A group of await conditions scoped to a command."""
    operator: ConditionOperator = ConditionOperator.ALL
    command: Optional[str] = None
    conditions: List[AwaitCondition] = Field(default_factory=list)

    def applies_to(self, command: str) -> bool:
        """Groups without a command target `apply`."""
        return (self.command or "apply").lower() == command.lower()


# ============================================================================
# DESCRIPTORS
# ============================================================================

class DescriptorRef(_ManifestModel):
    """
    Reference to a descriptor by (name, location).

    `*` or a missing field matches anything.
    """
    name: Optional[str] = None
    location: Optional[str] = None


class Descriptor(_ManifestModel):
    """One Kubernetes resource file belonging to an alveolus."""
    type: str = "kubernetes"
    name: str
    location: Optional[str] = None
    await_: bool = Field(default=False, alias="await")
    await_conditions: List[AwaitConditions] = Field(
        default_factory=list, alias="awaitConditions"
    )
    interpolate: bool = False
    include_if: Optional[Conditions] = Field(default=None, alias="includeIf")


class Patch(_ManifestModel):
    """A JSON-Patch (RFC 6902) targeted at matching descriptor names."""
    descriptor_name: str = Field(..., alias="descriptorName")
    interpolate: bool = False
    include_if: Optional[Conditions] = Field(default=None, alias="includeIf")
    patch: Optional[List[Dict[str, Any]]] = None


# ============================================================================
# ALVEOLUS
# ============================================================================

class AlveolusDependency(_ManifestModel):
    """
    Reference to another alveolus.

    Without a location the alveolus is looked up in the same manifest,
    then in the other visible manifests.
    """
    name: str
    location: Optional[str] = None
    include_if: Optional[Conditions] = Field(default=None, alias="includeIf")


class Alveolus(_ManifestModel):
    """A named, versioned deployable unit."""
    name: str
    version: Optional[str] = None
    descriptors: List[Descriptor] = Field(default_factory=list)
    dependencies: List[AlveolusDependency] = Field(default_factory=list)
    excluded_descriptors: List[DescriptorRef] = Field(
        default_factory=list, alias="excludedDescriptors"
    )
    patches: List[Patch] = Field(default_factory=list)
    placeholders: Dict[str, str] = Field(default_factory=dict)
    chain_dependencies: bool = Field(default=False, alias="chainDependencies")

    @field_validator("descriptors", "dependencies", "excluded_descriptors", "patches", mode="before")
    @classmethod
    def handle_null_lists(cls, v):
        """Accept explicit null as an empty list."""
        return [] if v is None else v

    @field_validator("placeholders", mode="before")
    @classmethod
    def stringify_placeholders(cls, v):
        """Placeholder values are always strings (YAML may yield numbers)."""
        if v is None:
            return {}
        return {str(k): "" if val is None else str(val) for k, val in v.items()}


# ============================================================================
# MANIFEST
# ============================================================================

class Requirement(_ManifestModel):
    """Version gate on the running kubehive version."""
    min_bundle_version: Optional[str] = Field(default=None, alias="minBundleVersion")
    max_bundle_version: Optional[str] = Field(default=None, alias="maxBundleVersion")
    forbidden_versions: List[str] = Field(default_factory=list, alias="forbiddenVersions")


class Manifest(_ManifestModel):
    """Top level document: version requirements and ordered alveoli."""
    requirements: List[Requirement] = Field(default_factory=list)
    alveoli: List[Alveolus] = Field(default_factory=list)

    @field_validator("requirements", "alveoli", mode="before")
    @classmethod
    def handle_null_lists(cls, v):
        return [] if v is None else v

    def find_alveolus(self, name: str) -> Optional[Alveolus]:
        """First alveolus with this name, if any."""
        for alveolus in self.alveoli:
            if alveolus.name == name:
                return alveolus
        return None


__all__ = [
    "Condition",
    "Conditions",
    "AwaitCondition",
    "AwaitConditions",
    "DescriptorRef",
    "Descriptor",
    "Patch",
    "AlveolusDependency",
    "Alveolus",
    "Requirement",
    "Manifest",
]
