"""
tierstack/modules/security.py

Renders the four security groups from a SecurityTopology. Group-to-group rules
reference the source group's id, never addresses. Groups are declared from the
outermost tier inwards, so every referenced source group already exists when a
rule pointing at it is created.

Inputs: project, vpc_id, topology (SecurityTopology)
Outputs: public_group_id, admin_group_id, app_group_id, db_group_id
"""

from __future__ import annotations

from typing import Any, Dict, List

from tierstack.deployment.graph import ModuleTemplate
from tierstack.deployment.topology import SecurityTopology
from tierstack.models.resources import (
    AttrRef,
    ModuleRender,
    ResourceDeclaration,
    ResourceKind,
    project_tags,
)
from tierstack.models.security import TIER_RANK, SecurityGroupName

MODULE = "security"
INPUT_NAMES = ("project", "vpc_id", "topology")
OUTPUT_NAMES = tuple(f"{group.value}_group_id" for group in SecurityGroupName)


def group_resource_name(group: SecurityGroupName) -> str:
    return f"{group.value}-sg"


def render(inputs: Dict[str, Any]) -> ModuleRender:
    project: str = inputs["project"]
    topology: SecurityTopology = inputs["topology"]
    topology.validate()

    resources: List[ResourceDeclaration] = []
    for group in sorted(SecurityGroupName, key=lambda g: TIER_RANK[g]):
        policy = topology.policy(group)
        ingress = [
            {
                "protocol": edge.protocol.value,
                "from_port": edge.ports.start,
                "to_port": edge.ports.end,
                "source_security_group_id": AttrRef(
                    resource=group_resource_name(edge.source)
                ),
                "description": edge.description,
            }
            for edge in policy.inbound
        ] + [
            {
                "protocol": rule.protocol.value,
                "from_port": rule.ports.start,
                "to_port": rule.ports.end,
                "cidr_blocks": [rule.cidr],
                "description": rule.description,
            }
            for rule in policy.cidr_ingress
        ]
        egress = [
            {
                "protocol": rule.protocol.value,
                "from_port": rule.ports.start,
                "to_port": rule.ports.end,
                "cidr_blocks": [rule.cidr],
            }
            for rule in policy.egress
        ]

        name = group_resource_name(group)
        resources.append(
            ResourceDeclaration(
                kind=ResourceKind.SECURITY_GROUP,
                name=name,
                attributes={
                    "name": f"{project}-{name}",
                    "description": f"{group.value} tier",
                    "vpc_id": inputs["vpc_id"],
                    "ingress": ingress,
                    "egress": egress,
                },
                tags=project_tags(project, name, MODULE),
            )
        )

    return ModuleRender(
        resources=resources,
        outputs={
            f"{group.value}_group_id": AttrRef(resource=group_resource_name(group))
            for group in SecurityGroupName
        },
    )


TEMPLATE = ModuleTemplate(
    input_names=INPUT_NAMES, output_names=OUTPUT_NAMES, render=render
)
