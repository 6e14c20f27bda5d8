# ============================================================================
# BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - MANIFEST RESOLUTION
# STATUS: Foundation - Core enums shared by models and engine
# PURPOSE: Define operator, condition and await-state enums
# EXPORTS: ConditionOperator, ConditionType, AwaitConditionType,
#          JsonPointerOperator, AwaitState, Command
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the deployment engine.

These enums are shared by the manifest models (where they are parsed from
JSON/YAML) and by the engine (where they drive evaluation).
"""

from enum import Enum


# ============================================================================
# CONDITION ENUMS
# ============================================================================

class ConditionOperator(str, Enum):
    """How a list of conditions is combined."""
    ALL = "ALL"    # conjunction
    ANY = "ANY"    # disjunction


class ConditionType(str, Enum):
    """Source of the value an include-if condition compares against."""
    ENV = "ENV"
    SYSTEM_PROPERTY = "SYSTEM_PROPERTY"


class AwaitConditionType(str, Enum):
    """Evaluation kind of an await condition."""
    JSON_POINTER = "JSON_POINTER"
    STATUS_CONDITION = "STATUS_CONDITION"


class JsonPointerOperator(str, Enum):
    """Comparison used by a JSON_POINTER await condition."""
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    EQUALS_IGNORE_CASE = "EQUALS_IGNORE_CASE"
    NOT_EQUALS_IGNORE_CASE = "NOT_EQUALS_IGNORE_CASE"
    CONTAINS = "CONTAINS"
    EXISTS = "EXISTS"
    MISSING = "MISSING"


# ============================================================================
# AWAIT STATE MACHINE
# ============================================================================

class AwaitState(str, Enum):
    """
    Lifecycle of one (command, descriptor) wait.

    State transitions:
        IDLE -> POLLING -> SATISFIED
                        -> TIMED_OUT
                        -> CANCELLED
    """
    IDLE = "idle"
    POLLING = "polling"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state (no further ticks)."""
        return self in (AwaitState.SATISFIED, AwaitState.TIMED_OUT, AwaitState.CANCELLED)


class Command(str, Enum):
    """Commands the driver knows how to run."""
    APPLY = "apply"
    DELETE = "delete"


__all__ = [
    "ConditionOperator",
    "ConditionType",
    "AwaitConditionType",
    "JsonPointerOperator",
    "AwaitState",
    "Command",
]
