"""
tierstack/deployment/subnets.py

Subnet allocation for the three tiers and its validation.

Explicit CIDR lists are spread over the availability zones round-robin. A tier
without an explicit list gets one block per zone, carved sequentially out of
the VPC range (skipping anything already taken).
"""

from __future__ import annotations

import ipaddress
import itertools
from typing import Dict, Iterator, List, Optional, Sequence

from tierstack.deployment.graph import ConfigurationError
from tierstack.models.network import SubnetAllocation, Tier

MIN_SUBNETS_PER_TIER = 2
MIN_ZONES_PER_TIER = 2


class SubnetAllocationError(ConfigurationError):
    """Subnets overlap, escape the VPC, or lack zone redundancy."""


def _carve(
    vpc: ipaddress.IPv4Network | ipaddress.IPv6Network,
    taken: List[ipaddress.IPv4Network | ipaddress.IPv6Network],
) -> Iterator[ipaddress.IPv4Network | ipaddress.IPv6Network]:
    new_prefix = max(24, vpc.prefixlen + 2)
    for block in vpc.subnets(new_prefix=new_prefix):
        if not any(block.overlaps(t) for t in taken):
            yield block


def allocate_subnets(
    vpc_cidr: str,
    availability_zones: Sequence[str],
    public: Optional[Sequence[str]] = None,
    app: Optional[Sequence[str]] = None,
    db: Optional[Sequence[str]] = None,
) -> List[SubnetAllocation]:
    """Build the subnet layout for all tiers and validate it.

    Raises:
        SubnetAllocationError: if the VPC range is exhausted or the layout is invalid.
    """
    if not availability_zones:
        raise SubnetAllocationError("At least one availability zone is required.")

    vpc = ipaddress.ip_network(vpc_cidr)
    given: Dict[Tier, Optional[Sequence[str]]] = {
        Tier.PUBLIC: public,
        Tier.APP: app,
        Tier.DB: db,
    }
    taken = [
        ipaddress.ip_network(c) for cidrs in given.values() if cidrs for c in cidrs
    ]
    carver = _carve(vpc, taken)

    allocations: List[SubnetAllocation] = []
    for tier, cidrs in given.items():
        if cidrs is None:
            blocks = list(itertools.islice(carver, len(availability_zones)))
            if len(blocks) < len(availability_zones):
                raise SubnetAllocationError(
                    f"VPC {vpc_cidr} has no room left for the {tier.value} tier."
                )
            cidrs = [str(b) for b in blocks]

        allocations.extend(
            SubnetAllocation(
                cidr=cidr,
                tier=tier,
                availability_zone=availability_zones[i % len(availability_zones)],
            )
            for i, cidr in enumerate(cidrs)
        )

    validate_subnets(vpc_cidr, allocations)
    return allocations


def validate_subnets(vpc_cidr: str, allocations: Sequence[SubnetAllocation]) -> None:
    """Check containment, disjointness and per-tier zone redundancy.

    Raises:
        SubnetAllocationError: naming the first offending subnet(s).
    """
    vpc = ipaddress.ip_network(vpc_cidr)

    for alloc in allocations:
        net = alloc.network
        if net.version != vpc.version or not net.subnet_of(vpc) or net == vpc:  # type: ignore[arg-type]
            raise SubnetAllocationError(
                f"Subnet {alloc.cidr} ({alloc.tier.value}) is not strictly inside VPC {vpc_cidr}."
            )

    for a, b in itertools.combinations(allocations, 2):
        if a.network.overlaps(b.network):
            raise SubnetAllocationError(
                f"Subnet {a.cidr} ({a.tier.value}) overlaps {b.cidr} ({b.tier.value})."
            )

    for tier in Tier:
        members = [a for a in allocations if a.tier == tier]
        zones = {a.availability_zone for a in members}
        if len(members) < MIN_SUBNETS_PER_TIER or len(zones) < MIN_ZONES_PER_TIER:
            raise SubnetAllocationError(
                f"Tier '{tier.value}' needs at least {MIN_SUBNETS_PER_TIER} subnets "
                f"across {MIN_ZONES_PER_TIER} zones; got {len(members)} in {len(zones)}."
            )


def by_tier(allocations: Sequence[SubnetAllocation], tier: Tier) -> List[SubnetAllocation]:
    return [a for a in allocations if a.tier == tier]
