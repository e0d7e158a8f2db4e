"""
tierstack/modules/networking.py

VPC, per-tier subnets, internet gateway, a NAT gateway for private egress and
the public/private route tables.

Inputs:
    project: Project identifier used in names and tags.
    vpc_cidr: VPC range.
    subnets: List[SubnetAllocation] for all tiers (already validated).

Outputs:
    vpc_id, public_subnet_ids, app_subnet_ids, db_subnet_ids, nat_public_ip
"""

from __future__ import annotations

from typing import Any, Dict, List

from tierstack.deployment.graph import ModuleTemplate
from tierstack.models.network import SubnetAllocation, Tier
from tierstack.models.resources import (
    AttrRef,
    ModuleRender,
    ResourceDeclaration,
    ResourceKind,
    project_tags,
)

MODULE = "networking"
INPUT_NAMES = ("project", "vpc_cidr", "subnets")
OUTPUT_NAMES = (
    "vpc_id",
    "public_subnet_ids",
    "app_subnet_ids",
    "db_subnet_ids",
    "nat_public_ip",
)


def subnet_resource_name(tier: Tier, index: int) -> str:
    return f"{tier.value}-subnet-{index}"


def render(inputs: Dict[str, Any]) -> ModuleRender:
    project: str = inputs["project"]
    subnets: List[SubnetAllocation] = list(inputs["subnets"])

    def decl(kind: ResourceKind, name: str, **attributes: Any) -> ResourceDeclaration:
        return ResourceDeclaration(
            kind=kind,
            name=name,
            attributes=attributes,
            tags=project_tags(project, name, MODULE),
        )

    vpc_id = AttrRef(resource="vpc")
    resources = [
        decl(
            ResourceKind.NETWORK,
            "vpc",
            cidr_block=inputs["vpc_cidr"],
            enable_dns_support=True,
            enable_dns_hostnames=True,
        ),
        decl(ResourceKind.INTERNET_GATEWAY, "igw", vpc_id=vpc_id),
    ]

    subnet_refs: Dict[Tier, List[AttrRef]] = {tier: [] for tier in Tier}
    for tier in Tier:
        for index, alloc in enumerate(a for a in subnets if a.tier == tier):
            name = subnet_resource_name(tier, index)
            resources.append(
                decl(
                    ResourceKind.SUBNET,
                    name,
                    vpc_id=vpc_id,
                    cidr_block=alloc.cidr,
                    availability_zone=alloc.availability_zone,
                    map_public_ip_on_launch=tier == Tier.PUBLIC,
                    tier=tier.value,
                )
            )
            subnet_refs[tier].append(AttrRef(resource=name))

    resources += [
        decl(ResourceKind.ELASTIC_IP, "nat-eip", domain="vpc"),
        decl(
            ResourceKind.NAT_GATEWAY,
            "nat",
            allocation_id=AttrRef(resource="nat-eip"),
            subnet_id=subnet_refs[Tier.PUBLIC][0],
        ),
        decl(
            ResourceKind.ROUTE_TABLE,
            "public-rt",
            vpc_id=vpc_id,
            routes=[{"cidr_block": "0.0.0.0/0", "gateway_id": AttrRef(resource="igw")}],
            subnet_ids=subnet_refs[Tier.PUBLIC],
        ),
        decl(
            ResourceKind.ROUTE_TABLE,
            "private-rt",
            vpc_id=vpc_id,
            routes=[
                {"cidr_block": "0.0.0.0/0", "nat_gateway_id": AttrRef(resource="nat")}
            ],
            subnet_ids=subnet_refs[Tier.APP] + subnet_refs[Tier.DB],
        ),
    ]

    return ModuleRender(
        resources=resources,
        outputs={
            "vpc_id": vpc_id,
            "public_subnet_ids": subnet_refs[Tier.PUBLIC],
            "app_subnet_ids": subnet_refs[Tier.APP],
            "db_subnet_ids": subnet_refs[Tier.DB],
            "nat_public_ip": AttrRef(resource="nat-eip", attribute="public_ip"),
        },
    )


TEMPLATE = ModuleTemplate(
    input_names=INPUT_NAMES, output_names=OUTPUT_NAMES, render=render
)
