"""
tierstack/modules/compute.py

App nodes behind the load balancer plus an SSH bastion.

Declares a key pair, a launch template whose user-data carries the node
bootstrap payload, an autoscaling group in the app subnets attached to the
target group with ELB health checks, a CPU target-tracking policy and a bastion
instance in the first public subnet.

The bootstrap payload is built here from the database outputs and the
credential inputs, so every node gets the same connection strings.
"""

from __future__ import annotations

from typing import Any, Dict, List

from tierstack.bootstrap.payload import build_bootstrap_payload, build_bootstrap_variables
from tierstack.bootstrap.user_data import encode_user_data, render_user_data
from tierstack.deployment.graph import ModuleTemplate
from tierstack.models.resources import (
    AUTOSCALING_GROUP_TAG,
    PROJECT_TAG,
    AttrRef,
    ModuleRender,
    QueryRef,
    ResourceDeclaration,
    ResourceKind,
    project_tags,
)
from tierstack.models.stack_config import BootstrapConfig, ComputeConfig, ContainerConfig
from tierstack.models.stack_settings import StackSecrets

MODULE = "compute"
INPUT_NAMES = (
    "project",
    "public_subnet_ids",
    "app_subnet_ids",
    "app_group_id",
    "admin_group_id",
    "target_group_arn",
    "db_host",
    "db_port",
    "db_name",
    "db_username",
    "settings",
    "container",
    "bootstrap",
    "secrets",
    "public_key",
)
OUTPUT_NAMES = (
    "key_name",
    "autoscaling_group_name",
    "launch_template_id",
    "bastion_instance_id",
    "bastion_public_ip",
    "ssh_user",
    "nodes",
)


def autoscaling_group_name(project: str) -> str:
    return f"{project}-app-asg"


def render(inputs: Dict[str, Any]) -> ModuleRender:
    project: str = inputs["project"]
    settings: ComputeConfig = inputs["settings"]
    container: ContainerConfig = inputs["container"]
    bootstrap: BootstrapConfig = inputs["bootstrap"]
    secrets: StackSecrets = inputs["secrets"]
    public_subnets: List[str] = list(inputs["public_subnet_ids"])

    variables = build_bootstrap_variables(
        secrets=secrets,
        container=container,
        db_host=inputs["db_host"],
        db_port=int(inputs["db_port"]),
        db_name=inputs["db_name"],
        db_username=inputs["db_username"],
    )
    payload = build_bootstrap_payload(
        variables, container, bootstrap, registry_server=secrets.registry_server
    )
    user_data = encode_user_data(
        render_user_data(payload, bootstrap.reconciler_command)
    )

    key_name = f"{project}-key"
    group_name = autoscaling_group_name(project)

    def decl(kind: ResourceKind, name: str, /, **attributes: Any) -> ResourceDeclaration:
        return ResourceDeclaration(
            kind=kind,
            name=name,
            attributes=attributes,
            tags=project_tags(project, name, MODULE),
        )

    resources = [
        decl(
            ResourceKind.KEY_PAIR,
            "key-pair",
            key_name=key_name,
            public_key=inputs["public_key"],
        ),
        decl(
            ResourceKind.LAUNCH_TEMPLATE,
            "launch-template",
            name_prefix=f"{project}-app-",
            image_id=settings.image_id,
            instance_type=settings.instance_type,
            key_name=key_name,
            vpc_security_group_ids=[inputs["app_group_id"]],
            user_data=user_data,
        ),
        decl(
            ResourceKind.AUTOSCALING_GROUP,
            "app-asg",
            name=group_name,
            min_size=settings.min_size,
            desired_capacity=settings.desired_capacity,
            max_size=settings.max_size,
            subnet_ids=list(inputs["app_subnet_ids"]),
            target_group_arns=[inputs["target_group_arn"]],
            health_check_type="ELB",
            health_check_grace_period=settings.health_check_grace_period,
            launch_template_id=AttrRef(resource="launch-template"),
            launch_template_version=AttrRef(
                resource="launch-template", attribute="latest_version"
            ),
        ),
        decl(
            ResourceKind.SCALING_POLICY,
            "cpu-target-tracking",
            name=f"{project}-cpu-target",
            autoscaling_group_name=AttrRef(resource="app-asg", attribute="name"),
            policy_type="TargetTrackingScaling",
            target_tracking_configuration={
                "predefined_metric_type": "ASGAverageCPUUtilization",
                "target_value": settings.target_cpu_utilization,
            },
        ),
        decl(
            ResourceKind.INSTANCE,
            "bastion",
            image_id=settings.image_id,
            instance_type=settings.bastion_instance_type,
            subnet_id=public_subnets[0],
            vpc_security_group_ids=[inputs["admin_group_id"]],
            key_name=key_name,
            associate_public_ip_address=True,
        ),
    ]

    return ModuleRender(
        resources=resources,
        outputs={
            "key_name": key_name,
            "autoscaling_group_name": group_name,
            "launch_template_id": AttrRef(resource="launch-template"),
            "bastion_instance_id": AttrRef(resource="bastion"),
            "bastion_public_ip": AttrRef(resource="bastion", attribute="public_ip"),
            "ssh_user": settings.ssh_user,
            "nodes": QueryRef(
                kind=ResourceKind.INSTANCE,
                tags={AUTOSCALING_GROUP_TAG: group_name, PROJECT_TAG: project},
                attributes=["private_ip", "state"],
            ),
        },
    )


TEMPLATE = ModuleTemplate(
    input_names=INPUT_NAMES, output_names=OUTPUT_NAMES, render=render
)
