"""
Configuration Objects - Data model for bootstrap and live configuration.

Defines the object metadata shared by every configuration kind, the two
concrete kinds (FlowSchema and PriorityLevelConfiguration), their defaulting
routines, and semantic spec comparison.
"""

import logging
from typing import Any, ClassVar, Dict, List, Optional, Type

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Annotation that lets an operator take a default object away from the system
AUTO_UPDATE_ANNOTATION = "apf.kubernetes.io/autoupdate-spec"

# Identity recorded on every write made by the ensurer
FIELD_MANAGER = "api-priority-and-fairness-config-producer-v1"

_TRUE_VALUES = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE_VALUES = {"0", "f", "F", "FALSE", "false", "False"}


def parse_bool(value: Optional[str]) -> Optional[bool]:
    """Parse a boolean annotation value, returning None if it is not one."""
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


class ObjectMeta(BaseModel):
    """Store-assigned identity and user-visible metadata of an object."""

    name: str
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: int = 0
    annotations: Dict[str, str] = Field(default_factory=dict)
    field_manager: Optional[str] = None


# ==================== FlowSchema ====================


class Subject(BaseModel):
    kind: str
    name: str
    namespace: Optional[str] = None


class ResourcePolicyRule(BaseModel):
    verbs: List[str] = Field(default_factory=list)
    api_groups: List[str] = Field(default_factory=list)
    resources: List[str] = Field(default_factory=list)
    cluster_scope: bool = False
    namespaces: List[str] = Field(default_factory=list)


class NonResourcePolicyRule(BaseModel):
    verbs: List[str] = Field(default_factory=list)
    non_resource_urls: List[str] = Field(default_factory=list)


class PolicyRulesWithSubjects(BaseModel):
    subjects: List[Subject] = Field(default_factory=list)
    resource_rules: List[ResourcePolicyRule] = Field(default_factory=list)
    non_resource_rules: List[NonResourcePolicyRule] = Field(default_factory=list)


class FlowSchemaSpec(BaseModel):
    """Classifies requests into a priority level."""

    priority_level_configuration: str
    matching_precedence: Optional[int] = None
    distinguisher_method: Optional[str] = None
    rules: List[PolicyRulesWithSubjects] = Field(default_factory=list)


# ==================== PriorityLevelConfiguration ====================


class QueuingConfiguration(BaseModel):
    queues: Optional[int] = None
    hand_size: Optional[int] = None
    queue_length_limit: Optional[int] = None


class LimitResponse(BaseModel):
    type: str
    queuing: Optional[QueuingConfiguration] = None


class LimitedPriorityLevelConfiguration(BaseModel):
    nominal_concurrency_shares: Optional[int] = None
    lendable_percent: Optional[int] = None
    borrowing_limit_percent: Optional[int] = None
    limit_response: Optional[LimitResponse] = None


class ExemptPriorityLevelConfiguration(BaseModel):
    nominal_concurrency_shares: Optional[int] = None
    lendable_percent: Optional[int] = None


class PriorityLevelConfigurationSpec(BaseModel):
    """Concurrency limits for the requests classified into this level."""

    type: str
    limited: Optional[LimitedPriorityLevelConfiguration] = None
    exempt: Optional[ExemptPriorityLevelConfiguration] = None


# ==================== Objects ====================


class ConfigurationObject(BaseModel):
    """
    A named configuration object of some kind.

    Subclasses set ``kind`` and declare a typed ``spec`` field.
    """

    kind: ClassVar[str] = ""

    metadata: ObjectMeta

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def annotations(self) -> Dict[str, str]:
        return self.metadata.annotations

    def deep_copy(self) -> "ConfigurationObject":
        """Return an independent copy that shares no mutable state."""
        return self.model_copy(deep=True)

    def spec_dict(self) -> Dict[str, Any]:
        """Serialize the spec for storage."""
        return self.spec.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ConfigurationObject":
        """
        Build an object from a store record.

        Args:
            record: Parsed row as returned by the DatabaseManager.
        """
        resource_version = record.get("resource_version")
        return cls(
            metadata=ObjectMeta(
                name=record["name"],
                uid=record.get("uid"),
                resource_version=(
                    str(resource_version) if resource_version is not None else None
                ),
                generation=record.get("generation") or 0,
                annotations=record.get("annotations") or {},
                field_manager=record.get("field_manager"),
            ),
            spec=record.get("spec") or {},
        )


class FlowSchema(ConfigurationObject):
    kind: ClassVar[str] = "FlowSchema"

    spec: FlowSchemaSpec


class PriorityLevelConfiguration(ConfigurationObject):
    kind: ClassVar[str] = "PriorityLevelConfiguration"

    spec: PriorityLevelConfigurationSpec


KINDS: Dict[str, Type[ConfigurationObject]] = {
    FlowSchema.kind: FlowSchema,
    PriorityLevelConfiguration.kind: PriorityLevelConfiguration,
}


def is_auto_update_enabled(obj: ConfigurationObject, default: bool = True) -> bool:
    """
    Read the auto-update annotation of an object.

    Args:
        obj: The live object.
        default: Value used when the annotation is absent or not a boolean.
    """
    value = obj.annotations.get(AUTO_UPDATE_ANNOTATION)
    if value is None:
        return default

    parsed = parse_bool(value)
    if parsed is None:
        logger.warning(
            f"{obj.kind} {obj.name!r} has a non-boolean {AUTO_UPDATE_ANNOTATION} "
            f"annotation {value!r}, treating it as {str(default).lower()}"
        )
        return default
    return parsed


def is_system_owned(obj: ConfigurationObject) -> bool:
    """Whether the object was written by the ensurer at some point."""
    return (
        AUTO_UPDATE_ANNOTATION in obj.annotations
        or obj.metadata.field_manager == FIELD_MANAGER
    )


# ==================== Defaulting ====================

FLOW_SCHEMA_DEFAULT_MATCHING_PRECEDENCE = 1000

PRIORITY_LEVEL_DEFAULT_NOMINAL_CONCURRENCY_SHARES = 30
PRIORITY_LEVEL_DEFAULT_LENDABLE_PERCENT = 0
PRIORITY_LEVEL_DEFAULT_QUEUES = 64
PRIORITY_LEVEL_DEFAULT_HAND_SIZE = 8
PRIORITY_LEVEL_DEFAULT_QUEUE_LENGTH_LIMIT = 50


def default_flow_schema_spec(spec: FlowSchemaSpec) -> FlowSchemaSpec:
    """Return a defaulted copy of a FlowSchema spec."""
    defaulted = spec.model_copy(deep=True)
    if defaulted.matching_precedence is None:
        defaulted.matching_precedence = FLOW_SCHEMA_DEFAULT_MATCHING_PRECEDENCE
    return defaulted


def default_priority_level_configuration_spec(
    spec: PriorityLevelConfigurationSpec,
) -> PriorityLevelConfigurationSpec:
    """Return a defaulted copy of a PriorityLevelConfiguration spec."""
    defaulted = spec.model_copy(deep=True)

    if defaulted.type == "Limited":
        if defaulted.limited is None:
            defaulted.limited = LimitedPriorityLevelConfiguration()
        limited = defaulted.limited
        if limited.nominal_concurrency_shares is None:
            limited.nominal_concurrency_shares = (
                PRIORITY_LEVEL_DEFAULT_NOMINAL_CONCURRENCY_SHARES
            )
        if limited.lendable_percent is None:
            limited.lendable_percent = PRIORITY_LEVEL_DEFAULT_LENDABLE_PERCENT

        response = limited.limit_response
        if response is not None and response.type == "Queue":
            if response.queuing is None:
                response.queuing = QueuingConfiguration()
            queuing = response.queuing
            if queuing.queues is None:
                queuing.queues = PRIORITY_LEVEL_DEFAULT_QUEUES
            if queuing.hand_size is None:
                queuing.hand_size = PRIORITY_LEVEL_DEFAULT_HAND_SIZE
            if queuing.queue_length_limit is None:
                queuing.queue_length_limit = PRIORITY_LEVEL_DEFAULT_QUEUE_LENGTH_LIMIT

    elif defaulted.type == "Exempt":
        if defaulted.exempt is None:
            defaulted.exempt = ExemptPriorityLevelConfiguration()
        exempt = defaulted.exempt
        if exempt.nominal_concurrency_shares is None:
            exempt.nominal_concurrency_shares = 0
        if exempt.lendable_percent is None:
            exempt.lendable_percent = 0

    return defaulted


# ==================== Semantic equality ====================


def _prune(value: Any) -> Any:
    """Drop unset and empty values so they compare equal to absent ones."""
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        return {k: v for k, v in pruned.items() if v not in (None, [], {})}
    if isinstance(value, list):
        return [_prune(v) for v in value]
    return value


def semantic_equal(a: BaseModel, b: BaseModel) -> bool:
    """
    Compare two specs by meaning rather than representation.

    Key order is irrelevant, and a missing list/mapping equals an empty one.
    List order still matters.
    """
    return _prune(a.model_dump()) == _prune(b.model_dump())
