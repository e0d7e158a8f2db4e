"""
tierstack/deployment/topology.py

The layered security topology: allow rules expressed as group-to-group edges
over {public, admin, app, db}, plus address-range ingress into the outer groups.

Layering rules checked by `SecurityTopology.validate()`:
  - every edge ends in a strictly more private tier than it starts
    (so the edge set is acyclic and no group accepts traffic from a more
    private one);
  - on the public chain an edge only steps one tier: public -> app -> db;
  - admin reaches app only, and only over SSH;
  - address-range ingress only lands on public or admin.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from tierstack.deployment.graph import ConfigurationError
from tierstack.models.security import (
    TIER_RANK,
    CidrIngress,
    EgressRule,
    PortRange,
    Protocol,
    SecurityEdge,
    SecurityGroupName as G,
)

SSH_PORT = 22

PortSpec = Union[int, Tuple[int, int], PortRange]


class SecurityLayeringViolationError(ConfigurationError):
    """An allow rule breaks the tier layering.

    Attributes:
        rule: The offending SecurityEdge or CidrIngress.
    """

    def __init__(self, message: str, rule: Union[SecurityEdge, CidrIngress]) -> None:
        super().__init__(message)
        self.rule = rule


class GroupPolicy(BaseModel):
    """Effective rules of one group, as rendered into a security group."""

    group: G
    inbound: List[SecurityEdge] = Field(default_factory=list)
    cidr_ingress: List[CidrIngress] = Field(default_factory=list)
    egress: List[EgressRule] = Field(default_factory=list)


def _ports(spec: PortSpec) -> PortRange:
    if isinstance(spec, PortRange):
        return spec
    if isinstance(spec, tuple):
        return PortRange(start=spec[0], end=spec[1])
    return PortRange.single(spec)


class SecurityTopology:
    def __init__(self) -> None:
        self.edges: List[SecurityEdge] = []
        self.cidr_ingress: List[CidrIngress] = []
        self.egress: List[EgressRule] = []

    def add_edge(
        self,
        source: G,
        destination: G,
        protocol: Protocol = Protocol.TCP,
        ports: Optional[PortSpec] = None,
        description: str = "",
    ) -> SecurityEdge:
        edge = SecurityEdge(
            source=source,
            destination=destination,
            protocol=protocol,
            ports=_ports(ports) if ports is not None else PortRange.every(),
            description=description,
        )
        if edge not in self.edges:
            self.edges.append(edge)
        return edge

    def add_cidr_ingress(
        self,
        destination: G,
        cidr: str,
        protocol: Protocol = Protocol.TCP,
        ports: Optional[PortSpec] = None,
        description: str = "",
    ) -> CidrIngress:
        rule = CidrIngress(
            destination=destination,
            cidr=cidr,
            protocol=protocol,
            ports=_ports(ports) if ports is not None else PortRange.every(),
            description=description,
        )
        if rule not in self.cidr_ingress:
            self.cidr_ingress.append(rule)
        return rule

    def add_egress(
        self,
        source: G,
        cidr: str = "0.0.0.0/0",
        protocol: Protocol = Protocol.ALL,
        ports: Optional[PortSpec] = None,
    ) -> EgressRule:
        rule = EgressRule(
            source=source,
            cidr=cidr,
            protocol=protocol,
            ports=_ports(ports) if ports is not None else PortRange.every(),
        )
        if rule not in self.egress:
            self.egress.append(rule)
        return rule

    def validate(self) -> None:
        """Raise SecurityLayeringViolationError for the first offending rule."""
        for edge in self.edges:
            _check_edge(edge)
        for rule in self.cidr_ingress:
            if rule.destination not in (G.PUBLIC, G.ADMIN):
                raise SecurityLayeringViolationError(
                    f"Address-range ingress {rule.cidr} into private group "
                    f"'{rule.destination.value}' is not allowed.",
                    rule,
                )

    def resolve(self, group: G) -> List[SecurityEdge]:
        """Inbound allow-list of `group`: every edge terminating there."""
        return [e for e in self.edges if e.destination == group]

    def policy(self, group: G) -> GroupPolicy:
        return GroupPolicy(
            group=group,
            inbound=self.resolve(group),
            cidr_ingress=[r for r in self.cidr_ingress if r.destination == group],
            egress=[r for r in self.egress if r.source == group],
        )


def _check_edge(edge: SecurityEdge) -> None:
    src, dst = edge.source, edge.destination

    if src == dst:
        raise SecurityLayeringViolationError(f"Self-referencing edge {edge}.", edge)

    if TIER_RANK[dst] <= TIER_RANK[src]:
        raise SecurityLayeringViolationError(
            f"Edge {edge} does not lead to a more private tier.", edge
        )

    if src == G.ADMIN:
        is_ssh = edge.protocol == Protocol.TCP and edge.ports == PortRange.single(SSH_PORT)
        if dst != G.APP or not is_ssh:
            raise SecurityLayeringViolationError(
                f"Edge {edge}: admin may only reach app over SSH.", edge
            )
        return

    if TIER_RANK[dst] != TIER_RANK[src] + 1:
        raise SecurityLayeringViolationError(
            f"Edge {edge} skips a tier; traffic must pass through each layer.", edge
        )


def default_topology(
    app_port: int,
    db_port: int,
    admin_cidrs: Iterable[str],
    public_ports: Iterable[int] = (80, 443),
    restrict_database_egress: bool = False,
) -> SecurityTopology:
    """The three-tier policy: internet -> public -> app -> db, operator -> admin -> app."""
    topology = SecurityTopology()

    for port in public_ports:
        topology.add_cidr_ingress(G.PUBLIC, "0.0.0.0/0", ports=port, description="web")
    for cidr in admin_cidrs:
        topology.add_cidr_ingress(G.ADMIN, cidr, ports=SSH_PORT, description="operator ssh")

    topology.add_edge(G.PUBLIC, G.APP, ports=app_port, description="load balancer to app")
    topology.add_edge(G.ADMIN, G.APP, ports=SSH_PORT, description="bastion ssh")
    topology.add_edge(G.APP, G.DB, ports=db_port, description="app to database")

    for group in G:
        if group == G.DB and restrict_database_egress:
            continue
        topology.add_egress(group)

    return topology
