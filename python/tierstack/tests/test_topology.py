"""
Tests for the layered security topology and the security module rendering.
"""

import pytest

from tierstack.deployment.graph import ConfigurationError
from tierstack.deployment.topology import (
    SSH_PORT,
    SecurityLayeringViolationError,
    SecurityTopology,
    default_topology,
)
from tierstack.models.resources import AttrRef
from tierstack.models.security import PortRange, Protocol, SecurityGroupName as G
from tierstack.modules import security


def _topology(**kwargs) -> SecurityTopology:
    return default_topology(app_port=80, db_port=5432, admin_cidrs=["198.51.100.0/24"], **kwargs)


class TestDefaultTopology:
    def test_is_valid(self):
        _topology().validate()

    def test_db_accepts_only_app(self):
        inbound = _topology().resolve(G.DB)
        assert [(e.source, e.ports) for e in inbound] == [(G.APP, PortRange.single(5432))]

    def test_app_accepts_public_and_admin_ssh(self):
        inbound = {(e.source, e.ports.start) for e in _topology().resolve(G.APP)}
        assert inbound == {(G.PUBLIC, 80), (G.ADMIN, SSH_PORT)}

    def test_cidr_ingress_only_on_outer_groups(self):
        topology = _topology()
        assert {r.destination for r in topology.cidr_ingress} == {G.PUBLIC, G.ADMIN}
        assert [r.cidr for r in topology.policy(G.ADMIN).cidr_ingress] == ["198.51.100.0/24"]

    def test_egress_open_by_default(self):
        topology = _topology()
        assert all(topology.policy(group).egress for group in G)

    def test_database_egress_can_be_restricted(self):
        topology = _topology(restrict_database_egress=True)
        assert topology.policy(G.DB).egress == []
        assert topology.policy(G.APP).egress


class TestLayeringViolations:
    def test_db_to_app_is_rejected(self):
        topology = SecurityTopology()
        edge = topology.add_edge(G.DB, G.APP, ports=3000)
        with pytest.raises(SecurityLayeringViolationError) as excinfo:
            topology.validate()
        assert excinfo.value.rule == edge

    def test_public_to_db_skips_a_tier(self):
        topology = SecurityTopology()
        topology.add_edge(G.PUBLIC, G.DB, ports=5432)
        with pytest.raises(SecurityLayeringViolationError, match="skips a tier"):
            topology.validate()

    def test_admin_to_db_is_rejected(self):
        topology = SecurityTopology()
        topology.add_edge(G.ADMIN, G.DB, ports=SSH_PORT)
        with pytest.raises(SecurityLayeringViolationError):
            topology.validate()

    def test_admin_to_app_must_be_ssh(self):
        topology = SecurityTopology()
        topology.add_edge(G.ADMIN, G.APP, ports=(0, 65535))
        with pytest.raises(SecurityLayeringViolationError, match="SSH"):
            topology.validate()

    def test_self_edge_is_rejected(self):
        topology = SecurityTopology()
        topology.add_edge(G.APP, G.APP, protocol=Protocol.ALL)
        with pytest.raises(SecurityLayeringViolationError):
            topology.validate()

    def test_cidr_into_database_is_rejected(self):
        topology = SecurityTopology()
        topology.add_cidr_ingress(G.DB, "0.0.0.0/0", ports=5432)
        with pytest.raises(SecurityLayeringViolationError, match="private group"):
            topology.validate()

    def test_violation_is_a_configuration_error(self):
        assert issubclass(SecurityLayeringViolationError, ConfigurationError)


class TestSecurityModuleRender:
    def test_groups_reference_source_group_ids(self):
        rendered = security.render(
            {"project": "pharma", "vpc_id": "vpc-1", "topology": _topology()}
        )
        names = [r.name for r in rendered.resources]
        assert names == ["public-sg", "admin-sg", "app-sg", "db-sg"]

        db_group = rendered.resources[-1]
        assert db_group.attributes["ingress"] == [
            {
                "protocol": "tcp",
                "from_port": 5432,
                "to_port": 5432,
                "source_security_group_id": AttrRef(resource="app-sg"),
                "description": "app to database",
            }
        ]
        assert all("cidr_blocks" not in rule for rule in db_group.attributes["ingress"])
        assert rendered.outputs["db_group_id"] == AttrRef(resource="db-sg")

    def test_invalid_topology_fails_render(self):
        topology = SecurityTopology()
        topology.add_edge(G.DB, G.PUBLIC)
        with pytest.raises(SecurityLayeringViolationError):
            security.render({"project": "pharma", "vpc_id": "vpc-1", "topology": topology})
