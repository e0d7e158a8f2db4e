"""
tierstack/modules/load_balancer.py

Internet-facing application load balancer in the public subnets, a target
group for the app nodes and an HTTP listener forwarding to it. An HTTPS
listener is added when a certificate is configured.

Inputs: project, vpc_id, public_subnet_ids, public_group_id, settings, target_port
Outputs: dns_name, load_balancer_arn, target_group_arn
"""

from __future__ import annotations

from typing import Any, Dict

from tierstack.deployment.graph import ModuleTemplate
from tierstack.models.resources import (
    AttrRef,
    ModuleRender,
    ResourceDeclaration,
    ResourceKind,
    project_tags,
)
from tierstack.models.stack_config import LoadBalancerConfig

MODULE = "load_balancer"
INPUT_NAMES = (
    "project",
    "vpc_id",
    "public_subnet_ids",
    "public_group_id",
    "settings",
    "target_port",
)
OUTPUT_NAMES = ("dns_name", "load_balancer_arn", "target_group_arn")


def render(inputs: Dict[str, Any]) -> ModuleRender:
    project: str = inputs["project"]
    settings: LoadBalancerConfig = inputs["settings"]

    resources = [
        ResourceDeclaration(
            kind=ResourceKind.LOAD_BALANCER,
            name="alb",
            attributes={
                "name": f"{project}-alb",
                "internal": False,
                "load_balancer_type": "application",
                "subnets": list(inputs["public_subnet_ids"]),
                "security_groups": [inputs["public_group_id"]],
            },
            tags=project_tags(project, "alb", MODULE),
        ),
        ResourceDeclaration(
            kind=ResourceKind.TARGET_GROUP,
            name="app-tg",
            attributes={
                "name": f"{project}-app-tg",
                "port": inputs["target_port"],
                "protocol": "HTTP",
                "target_type": "instance",
                "vpc_id": inputs["vpc_id"],
                "health_check": {
                    "path": settings.health_check_path,
                    "matcher": settings.health_check_matcher,
                    "interval": 30,
                    "healthy_threshold": 2,
                    "unhealthy_threshold": 5,
                },
            },
            tags=project_tags(project, "app-tg", MODULE),
        ),
        ResourceDeclaration(
            kind=ResourceKind.LISTENER,
            name="http-listener",
            attributes={
                "load_balancer_arn": AttrRef(resource="alb", attribute="arn"),
                "port": settings.listener_port,
                "protocol": "HTTP",
                "default_action": {
                    "type": "forward",
                    "target_group_arn": AttrRef(resource="app-tg", attribute="arn"),
                },
            },
            tags=project_tags(project, "http-listener", MODULE),
        ),
    ]
    if settings.certificate_arn is not None:
        resources.append(
            ResourceDeclaration(
                kind=ResourceKind.LISTENER,
                name="https-listener",
                attributes={
                    "load_balancer_arn": AttrRef(resource="alb", attribute="arn"),
                    "port": settings.https_port,
                    "protocol": "HTTPS",
                    "certificate_arn": settings.certificate_arn,
                    "default_action": {
                        "type": "forward",
                        "target_group_arn": AttrRef(resource="app-tg", attribute="arn"),
                    },
                },
                tags=project_tags(project, "https-listener", MODULE),
            )
        )

    return ModuleRender(
        resources=resources,
        outputs={
            "dns_name": AttrRef(resource="alb", attribute="dns_name"),
            "load_balancer_arn": AttrRef(resource="alb", attribute="arn"),
            "target_group_arn": AttrRef(resource="app-tg", attribute="arn"),
        },
    )


TEMPLATE = ModuleTemplate(
    input_names=INPUT_NAMES, output_names=OUTPUT_NAMES, render=render
)
