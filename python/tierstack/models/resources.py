"""
tierstack/models/resources.py

Pydantic models for managed-resource declarations and what the provider
adapter returns for them:
  - ResourceKind (Enum)
  - AttrRef: reference to an attribute of a resource declared in the same module
  - QueryRef: output expression resolved by querying the provider after apply
  - ResourceDeclaration
  - ProviderResource
  - ModuleRender: what a module template returns
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, model_validator

PROJECT_TAG = "Project"
NAME_TAG = "Name"
MODULE_TAG = "Module"
AUTOSCALING_GROUP_TAG = "AutoscalingGroup"


class ResourceKind(str, Enum):
    """Kinds of managed resources the provider adapter knows how to create."""

    NETWORK = "network"
    SUBNET = "subnet"
    INTERNET_GATEWAY = "internet-gateway"
    ELASTIC_IP = "elastic-ip"
    NAT_GATEWAY = "nat-gateway"
    ROUTE_TABLE = "route-table"
    SECURITY_GROUP = "security-group"
    DB_SUBNET_GROUP = "db-subnet-group"
    DATABASE_INSTANCE = "database-instance"
    LOAD_BALANCER = "load-balancer"
    TARGET_GROUP = "target-group"
    LISTENER = "listener"
    KEY_PAIR = "key-pair"
    LAUNCH_TEMPLATE = "launch-template"
    AUTOSCALING_GROUP = "autoscaling-group"
    SCALING_POLICY = "scaling-policy"
    INSTANCE = "instance"


class AttrRef(BaseModel):
    """Points at a generated attribute of a resource declared earlier in the same module.

    Attributes:
        resource: Logical name of the referenced ResourceDeclaration.
        attribute: Attribute name reported by the provider (e.g. "id", "dns_name").
    """

    model_config = ConfigDict(frozen=True)

    resource: str
    attribute: str = "id"


class QueryRef(BaseModel):
    """An output resolved via `provider.query` once the module's resources exist.

    Each matching resource is reduced to the listed attributes (plus its id).
    """

    model_config = ConfigDict(frozen=True)

    kind: ResourceKind
    tags: Dict[str, str] = Field(default_factory=dict)
    attributes: List[str] = Field(default_factory=list)


class ResourceDeclaration(BaseModel):
    """A single managed resource a module wants to exist.

    Attribute values are literals, or AttrRef objects (possibly nested inside
    lists/dicts) that are resolved to provider-generated values at apply time.
    """

    kind: ResourceKind
    name: str
    attributes: Dict[str, Any] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)


class ProviderResource(BaseModel):
    """A resource as reported back by the provider adapter."""

    id: str
    kind: ResourceKind
    attributes: Dict[str, Any] = Field(default_factory=dict)
    tags: Dict[str, str] = Field(default_factory=dict)


class ModuleRender(BaseModel):
    """Result of rendering a module template: resource declarations plus outputs.

    Outputs may contain literals, AttrRef and QueryRef values.
    """

    resources: List[ResourceDeclaration] = Field(default_factory=list)
    outputs: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def check_unique_resource_names(self) -> ModuleRender:
        names = [r.name for r in self.resources]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate resource name(s) in module render.")
        return self


def project_tags(project: str, name: str, module: str = "") -> Dict[str, str]:
    """Standard tag set for every declared resource."""
    tags = {PROJECT_TAG: project, NAME_TAG: f"{project}-{name}"}
    if module:
        tags[MODULE_TAG] = module
    return tags
