"""
End-to-end: the five-module stack applied against the local provider, with
the canonical 10.0.1-6.0/24 layout over two zones.
"""

import ipaddress

import pytest

from tierstack.bootstrap.user_data import decode_user_data, extract_payload
from tierstack.deployment.stack import (
    build_stack_graph,
    deploy_stack,
    destroy_order,
    destroy_stack,
)
from tierstack.deployment.subnets import SubnetAllocationError
from tierstack.models.resources import ResourceKind
from tierstack.models.stack_config import LoadBalancerConfig

PUBLIC_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQ test@tierstack"


@pytest.mark.asyncio
async def test_apply_order_and_outputs(stack_config, stack_secrets, provider):
    graph = build_stack_graph(stack_config, stack_secrets, PUBLIC_KEY)
    plan = graph.plan()
    assert plan.order == (
        "networking",
        "security",
        "database",
        "load_balancer",
        "compute",
    )

    outputs = await plan.execute(provider)

    net = outputs["networking"]
    subnet_cidrs = {
        r.id: r.attributes["cidr_block"]
        for r in await provider.query(ResourceKind.SUBNET)
    }
    assert [subnet_cidrs[i] for i in net["db_subnet_ids"]] == ["10.0.5.0/24", "10.0.6.0/24"]

    db_instance = (await provider.query(ResourceKind.DATABASE_INSTANCE))[0]
    assert db_instance.attributes["publicly_accessible"] is False
    assert db_instance.attributes["vpc_security_group_ids"] == [
        outputs["security"]["db_group_id"]
    ]

    template = (await provider.query(ResourceKind.LAUNCH_TEMPLATE))[0]
    payload = extract_payload(decode_user_data(template.attributes["user_data"]))
    database_url = payload.container_environment()["DATABASE_URL"]
    db_out = outputs["database"]
    assert f"@{db_out['host']}:{db_out['port']}/pharmadb" in database_url
    assert payload.image == "acme/pharma-webapp:latest"

    compute = outputs["compute"]
    assert compute["autoscaling_group_name"] == "pharma-app-asg"
    assert len(compute["nodes"]) == stack_config.compute.desired_capacity
    app_networks = [ipaddress.ip_network(c) for c in ("10.0.3.0/24", "10.0.4.0/24")]
    for node in compute["nodes"]:
        assert node["state"] == "running"
        assert any(ipaddress.ip_address(node["private_ip"]) in n for n in app_networks)

    bastion = (await provider.query(ResourceKind.INSTANCE, {"Name": "pharma-bastion"}))[0]
    assert bastion.attributes["subnet_id"] == net["public_subnet_ids"][0]
    assert compute["bastion_public_ip"] == bastion.attributes["public_ip"]


@pytest.mark.asyncio
async def test_app_group_only_admits_public_and_admin(stack_config, stack_secrets, provider):
    outputs = await deploy_stack(
        stack_config, stack_secrets, PUBLIC_KEY, provider, retry_delay=0
    )
    groups = outputs["security"]
    app_group = next(
        r for r in await provider.query(ResourceKind.SECURITY_GROUP)
        if r.id == groups["app_group_id"]
    )
    sources = {rule["source_security_group_id"] for rule in app_group.attributes["ingress"]}
    assert sources == {groups["public_group_id"], groups["admin_group_id"]}


@pytest.mark.asyncio
async def test_destroy_removes_everything_in_reverse(stack_config, stack_secrets, provider):
    await deploy_stack(stack_config, stack_secrets, PUBLIC_KEY, provider, retry_delay=0)
    assert destroy_order() == [
        "compute",
        "load_balancer",
        "database",
        "security",
        "networking",
    ]

    deleted = await destroy_stack(stack_config, provider, retry_delay=0)
    assert deleted
    assert provider.resources == []
    assert await destroy_stack(stack_config, provider, retry_delay=0) == []


@pytest.mark.asyncio
async def test_redeploy_reuses_existing_resources(stack_config, stack_secrets, provider):
    first = await deploy_stack(stack_config, stack_secrets, PUBLIC_KEY, provider, retry_delay=0)
    count = len(provider.resources)
    second = await deploy_stack(stack_config, stack_secrets, PUBLIC_KEY, provider, retry_delay=0)
    assert len(provider.resources) == count
    assert first["networking"]["vpc_id"] == second["networking"]["vpc_id"]


def test_overlapping_layout_fails_before_apply(stack_config, stack_secrets):
    stack_config.db_subnet_cidrs = ["10.0.4.0/24", "10.0.6.0/24"]
    with pytest.raises(SubnetAllocationError):
        build_stack_graph(stack_config, stack_secrets, PUBLIC_KEY)


async def _public_ingress_ports(provider, groups):
    public_group = next(
        r for r in await provider.query(ResourceKind.SECURITY_GROUP)
        if r.id == groups["public_group_id"]
    )
    return sorted(
        rule["from_port"]
        for rule in public_group.attributes["ingress"]
        if rule.get("cidr_blocks") == ["0.0.0.0/0"]
    )


@pytest.mark.asyncio
async def test_https_only_opened_with_a_certificate(stack_config, stack_secrets, provider):
    outputs = await deploy_stack(
        stack_config, stack_secrets, PUBLIC_KEY, provider, retry_delay=0
    )
    assert await _public_ingress_ports(provider, outputs["security"]) == [80]
    listeners = await provider.query(ResourceKind.LISTENER)
    assert [listener.attributes["protocol"] for listener in listeners] == ["HTTP"]


@pytest.mark.asyncio
async def test_certificate_adds_https_listener(stack_config, stack_secrets, provider):
    stack_config.load_balancer = LoadBalancerConfig(
        certificate_arn="arn:aws:acm:us-east-1:123456789012:certificate/abc"
    )
    outputs = await deploy_stack(
        stack_config, stack_secrets, PUBLIC_KEY, provider, retry_delay=0
    )
    assert await _public_ingress_ports(provider, outputs["security"]) == [80, 443]
    https = next(
        listener for listener in await provider.query(ResourceKind.LISTENER)
        if listener.attributes["protocol"] == "HTTPS"
    )
    assert https.attributes["port"] == 443
    assert https.attributes["default_action"]["target_group_arn"] == (
        outputs["load_balancer"]["target_group_arn"]
    )
