"""
Bootstrap Configuration - Built-in default configuration objects.

The tables below are fixed for the lifetime of the process. Callers only ever
get deep copies of them, so nothing downstream can alter the defaults by
mutating what it was handed.
"""

from typing import List, Optional, Sequence

from objects import (
    ConfigurationObject,
    FlowSchema,
    FlowSchemaSpec,
    LimitResponse,
    LimitedPriorityLevelConfiguration,
    NonResourcePolicyRule,
    ObjectMeta,
    PolicyRulesWithSubjects,
    PriorityLevelConfiguration,
    PriorityLevelConfigurationSpec,
    QueuingConfiguration,
    ResourcePolicyRule,
    Subject,
)

SYSTEM_MASTERS_GROUP = "system:masters"
SYSTEM_NODES_GROUP = "system:nodes"
AUTHENTICATED_GROUP = "system:authenticated"
UNAUTHENTICATED_GROUP = "system:unauthenticated"

ALL_VERBS = ["*"]
ALL_GROUPS = ["*"]
ALL_RESOURCES = ["*"]
ALL_NAMESPACES = ["*"]
ALL_URLS = ["*"]


def _priority_level(
    name: str, spec: PriorityLevelConfigurationSpec
) -> PriorityLevelConfiguration:
    return PriorityLevelConfiguration(metadata=ObjectMeta(name=name), spec=spec)


def _limited(
    shares: int,
    lendable_percent: int = 0,
    queuing: Optional[QueuingConfiguration] = None,
) -> PriorityLevelConfigurationSpec:
    if queuing is None:
        response = LimitResponse(type="Reject")
    else:
        response = LimitResponse(type="Queue", queuing=queuing)
    return PriorityLevelConfigurationSpec(
        type="Limited",
        limited=LimitedPriorityLevelConfiguration(
            nominal_concurrency_shares=shares,
            lendable_percent=lendable_percent,
            limit_response=response,
        ),
    )


def _flow_schema(
    name: str,
    priority_level: str,
    precedence: int,
    distinguisher_method: Optional[str] = None,
    rules: Optional[List[PolicyRulesWithSubjects]] = None,
) -> FlowSchema:
    return FlowSchema(
        metadata=ObjectMeta(name=name),
        spec=FlowSchemaSpec(
            priority_level_configuration=priority_level,
            matching_precedence=precedence,
            distinguisher_method=distinguisher_method,
            rules=rules or [],
        ),
    )


def _groups(*names: str) -> List[Subject]:
    return [Subject(kind="Group", name=name) for name in names]


def _users(*names: str) -> List[Subject]:
    return [Subject(kind="User", name=name) for name in names]


def _all_resources(cluster_scope: bool = True) -> List[ResourcePolicyRule]:
    return [
        ResourcePolicyRule(
            verbs=ALL_VERBS,
            api_groups=ALL_GROUPS,
            resources=ALL_RESOURCES,
            cluster_scope=cluster_scope,
            namespaces=ALL_NAMESPACES,
        )
    ]


def _all_non_resources() -> List[NonResourcePolicyRule]:
    return [NonResourcePolicyRule(verbs=ALL_VERBS, non_resource_urls=ALL_URLS)]


def _everything(subjects: List[Subject]) -> List[PolicyRulesWithSubjects]:
    return [
        PolicyRulesWithSubjects(
            subjects=subjects,
            resource_rules=_all_resources(),
            non_resource_rules=_all_non_resources(),
        )
    ]


# ==================== Mandatory ====================

MANDATORY_PRIORITY_LEVELS = (
    _priority_level("exempt", PriorityLevelConfigurationSpec(type="Exempt")),
    _priority_level("catch-all", _limited(shares=5)),
)

MANDATORY_FLOW_SCHEMAS = (
    _flow_schema(
        "exempt",
        "exempt",
        precedence=1,
        rules=_everything(_groups(SYSTEM_MASTERS_GROUP)),
    ),
    _flow_schema(
        "catch-all",
        "catch-all",
        precedence=10000,
        distinguisher_method="ByUser",
        rules=_everything(_groups(AUTHENTICATED_GROUP, UNAUTHENTICATED_GROUP)),
    ),
)

# ==================== Suggested ====================

_STANDARD_QUEUING = QueuingConfiguration(queues=64, hand_size=6, queue_length_limit=50)

SUGGESTED_PRIORITY_LEVELS = (
    _priority_level(
        "node-high", _limited(shares=40, lendable_percent=25, queuing=_STANDARD_QUEUING)
    ),
    _priority_level(
        "system", _limited(shares=30, lendable_percent=33, queuing=_STANDARD_QUEUING)
    ),
    _priority_level(
        "leader-election",
        _limited(
            shares=10,
            queuing=QueuingConfiguration(queues=16, hand_size=4, queue_length_limit=50),
        ),
    ),
    _priority_level(
        "workload-high",
        _limited(shares=40, lendable_percent=50, queuing=_STANDARD_QUEUING),
    ),
    _priority_level(
        "workload-low",
        _limited(shares=100, lendable_percent=90, queuing=_STANDARD_QUEUING),
    ),
    _priority_level(
        "global-default",
        _limited(
            shares=20,
            lendable_percent=50,
            queuing=QueuingConfiguration(
                queues=128, hand_size=6, queue_length_limit=50
            ),
        ),
    ),
)

SUGGESTED_FLOW_SCHEMAS = (
    _flow_schema(
        "system-nodes",
        "system",
        precedence=500,
        distinguisher_method="ByUser",
        rules=_everything(_groups(SYSTEM_NODES_GROUP)),
    ),
    _flow_schema(
        "system-node-high",
        "node-high",
        precedence=400,
        distinguisher_method="ByUser",
        rules=[
            PolicyRulesWithSubjects(
                subjects=_groups(SYSTEM_NODES_GROUP),
                resource_rules=[
                    ResourcePolicyRule(
                        verbs=ALL_VERBS,
                        api_groups=["", "coordination.k8s.io"],
                        resources=["nodes", "nodes/status", "leases"],
                        cluster_scope=True,
                        namespaces=ALL_NAMESPACES,
                    )
                ],
            )
        ],
    ),
    _flow_schema(
        "probes",
        "exempt",
        precedence=2,
        rules=[
            PolicyRulesWithSubjects(
                subjects=_groups(AUTHENTICATED_GROUP, UNAUTHENTICATED_GROUP),
                non_resource_rules=[
                    NonResourcePolicyRule(
                        verbs=["get"],
                        non_resource_urls=["/healthz", "/readyz", "/livez"],
                    )
                ],
            )
        ],
    ),
    _flow_schema(
        "system-leader-election",
        "leader-election",
        precedence=100,
        distinguisher_method="ByUser",
        rules=[
            PolicyRulesWithSubjects(
                subjects=_users(
                    "system:kube-controller-manager", "system:kube-scheduler"
                ),
                resource_rules=[
                    ResourcePolicyRule(
                        verbs=["get", "create", "update"],
                        api_groups=["coordination.k8s.io"],
                        resources=["leases"],
                        namespaces=ALL_NAMESPACES,
                    )
                ],
            )
        ],
    ),
    _flow_schema(
        "workload-leader-election",
        "leader-election",
        precedence=200,
        distinguisher_method="ByUser",
        rules=[
            PolicyRulesWithSubjects(
                subjects=[
                    Subject(
                        kind="ServiceAccount",
                        name="*",
                        namespace="kube-system",
                    )
                ],
                resource_rules=[
                    ResourcePolicyRule(
                        verbs=["get", "create", "update"],
                        api_groups=["coordination.k8s.io"],
                        resources=["leases"],
                        namespaces=ALL_NAMESPACES,
                    )
                ],
            )
        ],
    ),
    _flow_schema(
        "kube-controller-manager",
        "workload-high",
        precedence=800,
        distinguisher_method="ByNamespace",
        rules=_everything(_users("system:kube-controller-manager")),
    ),
    _flow_schema(
        "kube-scheduler",
        "workload-high",
        precedence=800,
        distinguisher_method="ByNamespace",
        rules=_everything(_users("system:kube-scheduler")),
    ),
    _flow_schema(
        "service-accounts",
        "workload-low",
        precedence=9000,
        distinguisher_method="ByUser",
        rules=_everything(_groups("system:serviceaccounts")),
    ),
    _flow_schema(
        "global-default",
        "global-default",
        precedence=9900,
        distinguisher_method="ByUser",
        rules=_everything(_groups(AUTHENTICATED_GROUP, UNAUTHENTICATED_GROUP)),
    ),
)


def _copies(objects: Sequence[ConfigurationObject]) -> List[ConfigurationObject]:
    return [obj.deep_copy() for obj in objects]


class BootstrapConfiguration:
    """
    A fixed set of bootstrap objects, split by kind and by strategy.

    Every accessor returns fresh deep copies.
    """

    def __init__(
        self,
        mandatory_priority_levels: Sequence[PriorityLevelConfiguration] = (
            MANDATORY_PRIORITY_LEVELS
        ),
        suggested_priority_levels: Sequence[PriorityLevelConfiguration] = (
            SUGGESTED_PRIORITY_LEVELS
        ),
        mandatory_flow_schemas: Sequence[FlowSchema] = MANDATORY_FLOW_SCHEMAS,
        suggested_flow_schemas: Sequence[FlowSchema] = SUGGESTED_FLOW_SCHEMAS,
    ):
        self._mandatory_priority_levels = tuple(_copies(mandatory_priority_levels))
        self._suggested_priority_levels = tuple(_copies(suggested_priority_levels))
        self._mandatory_flow_schemas = tuple(_copies(mandatory_flow_schemas))
        self._suggested_flow_schemas = tuple(_copies(suggested_flow_schemas))

    def mandatory_priority_levels(self) -> List[PriorityLevelConfiguration]:
        return _copies(self._mandatory_priority_levels)

    def suggested_priority_levels(self) -> List[PriorityLevelConfiguration]:
        return _copies(self._suggested_priority_levels)

    def mandatory_flow_schemas(self) -> List[FlowSchema]:
        return _copies(self._mandatory_flow_schemas)

    def suggested_flow_schemas(self) -> List[FlowSchema]:
        return _copies(self._suggested_flow_schemas)

    def all_of_kind(self, kind: str) -> List[ConfigurationObject]:
        """Every bootstrap object of a kind, mandatory first."""
        if kind == PriorityLevelConfiguration.kind:
            return self.mandatory_priority_levels() + self.suggested_priority_levels()
        if kind == FlowSchema.kind:
            return self.mandatory_flow_schemas() + self.suggested_flow_schemas()
        raise ValueError(f"Unknown configuration kind '{kind}'")
