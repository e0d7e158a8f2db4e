"""
tierstack/modules/database.py

Managed database instance in the db subnets, reachable only through the db
security group and never publicly accessible.

Inputs: project, db_subnet_ids, db_group_id, settings (DatabaseConfig), password
Outputs: host, port, endpoint, database_name, username
"""

from __future__ import annotations

from typing import Any, Dict

from pydantic import SecretStr

from tierstack.deployment.graph import ModuleTemplate
from tierstack.models.resources import (
    AttrRef,
    ModuleRender,
    ResourceDeclaration,
    ResourceKind,
    project_tags,
)
from tierstack.models.stack_config import DatabaseConfig

MODULE = "database"
INPUT_NAMES = ("project", "db_subnet_ids", "db_group_id", "settings", "password")
OUTPUT_NAMES = ("host", "port", "endpoint", "database_name", "username")


def render(inputs: Dict[str, Any]) -> ModuleRender:
    project: str = inputs["project"]
    settings: DatabaseConfig = inputs["settings"]
    password: SecretStr = inputs["password"]

    subnet_group = ResourceDeclaration(
        kind=ResourceKind.DB_SUBNET_GROUP,
        name="db-subnet-group",
        attributes={
            "name": f"{project}-db-subnets",
            "subnet_ids": list(inputs["db_subnet_ids"]),
        },
        tags=project_tags(project, "db-subnet-group", MODULE),
    )
    instance = ResourceDeclaration(
        kind=ResourceKind.DATABASE_INSTANCE,
        name="db",
        attributes={
            "identifier": f"{project}-db",
            "engine": settings.engine,
            "engine_version": settings.engine_version,
            "instance_class": settings.instance_class,
            "allocated_storage": settings.allocated_storage_gb,
            "storage_encrypted": True,
            "db_name": settings.name,
            "username": settings.username,
            "password": password.get_secret_value(),
            "port": settings.port,
            "db_subnet_group_name": AttrRef(resource="db-subnet-group"),
            "vpc_security_group_ids": [inputs["db_group_id"]],
            "publicly_accessible": False,
            "multi_az": settings.multi_az,
            "skip_final_snapshot": settings.skip_final_snapshot,
        },
        tags=project_tags(project, "db", MODULE),
    )

    return ModuleRender(
        resources=[subnet_group, instance],
        outputs={
            "host": AttrRef(resource="db", attribute="address"),
            "port": AttrRef(resource="db", attribute="port"),
            "endpoint": AttrRef(resource="db", attribute="endpoint"),
            "database_name": settings.name,
            "username": settings.username,
        },
    )


TEMPLATE = ModuleTemplate(
    input_names=INPUT_NAMES, output_names=OUTPUT_NAMES, render=render
)
