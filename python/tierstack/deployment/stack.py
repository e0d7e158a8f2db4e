"""
tierstack/deployment/stack.py

Assembles a StackConfig into a ModuleGraph and drives it:

  networking -> security -> database -> load_balancer -> compute

  - build_stack_graph: allocate subnets, build the security topology, register
    every module with typed output handles and declared dependencies, and
    register the pre-flight checks.
  - deploy_stack: plan + execute against a provider (transient errors retried
    at the adapter boundary).
  - destroy_stack: delete by tags, module by module, in reverse apply order.
    Needs no secrets, so it works from a fresh process.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from tierstack.deployment.graph import ModuleGraph, Plan, topological_order
from tierstack.deployment.subnets import allocate_subnets, validate_subnets
from tierstack.deployment.topology import default_topology
from tierstack.models.resources import MODULE_TAG, PROJECT_TAG
from tierstack.models.stack_config import StackConfig
from tierstack.models.stack_settings import StackSecrets
from tierstack.modules import compute, database, load_balancer, networking, security
from tierstack.providers.base import ProviderAdapter, RetryingProvider

logger = logging.getLogger(__name__)

DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    networking.MODULE: (),
    security.MODULE: (networking.MODULE,),
    database.MODULE: (networking.MODULE, security.MODULE),
    load_balancer.MODULE: (networking.MODULE, security.MODULE),
    compute.MODULE: (
        networking.MODULE,
        security.MODULE,
        database.MODULE,
        load_balancer.MODULE,
    ),
}


def build_stack_graph(
    config: StackConfig, secrets: StackSecrets, public_key: str
) -> ModuleGraph:
    """
    Register the five stack modules. Nothing is created here.

    Raises:
        SubnetAllocationError: if the subnet layout cannot be built.
    """
    subnets = allocate_subnets(
        config.vpc_cidr,
        config.availability_zones,
        public=config.public_subnet_cidrs,
        app=config.app_subnet_cidrs,
        db=config.db_subnet_cidrs,
    )
    topology = default_topology(
        app_port=config.container.host_port,
        db_port=config.database.port,
        admin_cidrs=config.admin_ingress_cidrs,
        public_ports=config.load_balancer.public_ports(),
        restrict_database_egress=config.restrict_database_egress,
    )

    graph = ModuleGraph()
    graph.add_check("security topology layering", topology.validate)
    graph.add_check(
        "subnet layout", lambda: validate_subnets(config.vpc_cidr, subnets)
    )

    project = config.project_name

    net = graph.register(
        networking.MODULE,
        networking.TEMPLATE,
        inputs={"project": project, "vpc_cidr": config.vpc_cidr, "subnets": subnets},
        depends_on=DEPENDENCIES[networking.MODULE],
    )
    sec = graph.register(
        security.MODULE,
        security.TEMPLATE,
        inputs={
            "project": project,
            "vpc_id": net.output("vpc_id"),
            "topology": topology,
        },
        depends_on=DEPENDENCIES[security.MODULE],
    )
    db = graph.register(
        database.MODULE,
        database.TEMPLATE,
        inputs={
            "project": project,
            "db_subnet_ids": net.output("db_subnet_ids"),
            "db_group_id": sec.output("db_group_id"),
            "settings": config.database,
            "password": secrets.database_password,
        },
        depends_on=DEPENDENCIES[database.MODULE],
    )
    lb = graph.register(
        load_balancer.MODULE,
        load_balancer.TEMPLATE,
        inputs={
            "project": project,
            "vpc_id": net.output("vpc_id"),
            "public_subnet_ids": net.output("public_subnet_ids"),
            "public_group_id": sec.output("public_group_id"),
            "settings": config.load_balancer,
            "target_port": config.container.host_port,
        },
        depends_on=DEPENDENCIES[load_balancer.MODULE],
    )
    graph.register(
        compute.MODULE,
        compute.TEMPLATE,
        inputs={
            "project": project,
            "public_subnet_ids": net.output("public_subnet_ids"),
            "app_subnet_ids": net.output("app_subnet_ids"),
            "app_group_id": sec.output("app_group_id"),
            "admin_group_id": sec.output("admin_group_id"),
            "target_group_arn": lb.output("target_group_arn"),
            "db_host": db.output("host"),
            "db_port": db.output("port"),
            "db_name": db.output("database_name"),
            "db_username": db.output("username"),
            "settings": config.compute,
            "container": config.container,
            "bootstrap": config.bootstrap,
            "secrets": secrets,
            "public_key": public_key,
        },
        depends_on=DEPENDENCIES[compute.MODULE],
    )
    return graph


def plan_stack(config: StackConfig, secrets: StackSecrets, public_key: str) -> Plan:
    """Build the graph and run every configuration-time check."""
    return build_stack_graph(config, secrets, public_key).plan()


async def deploy_stack(
    config: StackConfig,
    secrets: StackSecrets,
    public_key: str,
    provider: ProviderAdapter,
    retries: int = 5,
    retry_delay: float = 2.0,
) -> Dict[str, Dict[str, Any]]:
    """Plan and apply the whole stack. Returns each module's outputs."""
    plan = plan_stack(config, secrets, public_key)
    logger.info("Apply order: %s", " -> ".join(plan.order))
    return await plan.execute(RetryingProvider(provider, retries, retry_delay))


def destroy_order() -> List[str]:
    """Reverse of the apply order, derived from the declared dependencies alone."""
    return list(reversed(topological_order(DEPENDENCIES)))


async def destroy_stack(
    config: StackConfig,
    provider: ProviderAdapter,
    retries: int = 5,
    retry_delay: float = 2.0,
) -> List[str]:
    """
    Delete every tagged resource of the stack, module by module in reverse
    apply order, and within a module in reverse creation order.

    Returns:
        The ids of the deleted resources, in deletion order.
    """
    wrapped = RetryingProvider(provider, retries, retry_delay)
    deleted: List[str] = []
    for module in destroy_order():
        found = await wrapped.query(
            tags={PROJECT_TAG: config.project_name, MODULE_TAG: module}
        )
        for resource in reversed(found):
            await wrapped.delete(resource.id)
            deleted.append(resource.id)
        logger.info("Destroyed module '%s' (%d resources)", module, len(found))
    return deleted
