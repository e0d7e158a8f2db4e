"""
tierstack/models/stack_config.py

Declarative description of a three-tier stack, loaded from YAML:
  - DatabaseConfig
  - LoadBalancerConfig
  - ComputeConfig
  - ContainerConfig
  - BootstrapConfig
  - StackConfig
"""

from __future__ import annotations

import ipaddress
import re
from typing import Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from tierstack.models.bootstrap import RetryPolicy, RuntimeSpec

_PROJECT_RE = re.compile(r"^[a-z][a-z0-9-]{1,30}[a-z0-9]$")


class DatabaseConfig(BaseModel):
    engine: str = "postgres"
    engine_version: str = "15"
    instance_class: str = "db.t3.micro"
    allocated_storage_gb: int = Field(default=20, ge=20)
    name: str = "pharmadb"
    username: str = "dbadmin"
    port: int = Field(default=5432, ge=1, le=65535)
    multi_az: bool = False
    skip_final_snapshot: bool = True


class LoadBalancerConfig(BaseModel):
    """HTTP listener, plus an HTTPS listener when a certificate is given."""

    listener_port: int = Field(default=80, ge=1, le=65535)
    https_port: int = Field(default=443, ge=1, le=65535)
    certificate_arn: Optional[str] = None
    health_check_path: str = "/"
    health_check_matcher: str = "200-399"

    def public_ports(self) -> List[int]:
        """Ports the internet may reach on the public tier."""
        if self.certificate_arn is None:
            return [self.listener_port]
        return [self.listener_port, self.https_port]


class ComputeConfig(BaseModel):
    """Launch template, scaling group and bastion sizing.

    Attributes:
        image_id: Machine image for app nodes and the bastion.
        private_key_path: Where the generated SSH private key is written once.
    """

    instance_type: str = "t3.micro"
    image_id: str = "ami-0c02fb55956c7d316"  # Amazon Linux 2, us-east-1
    min_size: int = Field(default=1, ge=0)
    desired_capacity: int = Field(default=2, ge=0)
    max_size: int = Field(default=4, ge=1)
    target_cpu_utilization: float = Field(default=50.0, gt=0.0, le=100.0)
    health_check_grace_period: int = Field(default=300, ge=0)
    bastion_instance_type: str = "t3.micro"
    ssh_user: str = "ec2-user"
    private_key_path: str = "tierstack-key.pem"

    @model_validator(mode="after")
    def check_capacity(self) -> ComputeConfig:
        if not self.min_size <= self.desired_capacity <= self.max_size:
            raise ValueError(
                "Scaling capacity must satisfy min_size <= desired_capacity <= max_size."
            )
        return self


class ContainerConfig(BaseModel):
    """Application container settings; defaults mirror the deployed web app."""

    name: str = "pharma-app"
    image_name: str = "pharma-webapp"
    image_tag: str = "latest"
    image_reference: Optional[str] = None
    host_port: int = Field(default=80, ge=1, le=65535)
    container_port: int = Field(default=3000, ge=1, le=65535)
    restart_policy: str = "always"
    literal_environment: Dict[str, str] = Field(
        default_factory=lambda: {
            "NEXT_PUBLIC_CLERK_SIGN_IN_URL": "/sign-in",
            "NEXT_PUBLIC_CLERK_SIGN_UP_URL": "/sign-up",
            "NEXT_PUBLIC_CLERK_AFTER_SIGN_IN_URL": "/dashboard",
            "NEXT_PUBLIC_CLERK_AFTER_SIGN_UP_URL": "/dashboard",
        }
    )

    def resolve_image(self, registry_username: str) -> str:
        """Explicit image_reference wins; else `<user>/<image_name>:<tag>`."""
        if self.image_reference:
            return self.image_reference
        return f"{registry_username}/{self.image_name}:{self.image_tag}"


class BootstrapConfig(BaseModel):
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    runtime: RuntimeSpec = Field(default_factory=RuntimeSpec)
    log_path: str = "/var/log/user-data.log"
    reconciler_command: str = "python3 -m tierstack.bootstrap.reconciler"


class StackConfig(BaseModel):
    """
    Top-level declarative description of one environment.

    Tier subnet lists are optional; a missing list is carved out of `vpc_cidr`
    as /24 blocks, one per availability zone.
    """

    project_name: str
    region: str = "us-east-1"
    vpc_cidr: str = "10.0.0.0/16"
    availability_zones: List[str] = Field(
        default_factory=lambda: ["us-east-1a", "us-east-1b"]
    )
    public_subnet_cidrs: Optional[List[str]] = None
    app_subnet_cidrs: Optional[List[str]] = None
    db_subnet_cidrs: Optional[List[str]] = None
    admin_ingress_cidrs: List[str] = Field(default_factory=lambda: ["0.0.0.0/0"])
    restrict_database_egress: bool = False
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    load_balancer: LoadBalancerConfig = Field(default_factory=LoadBalancerConfig)
    compute: ComputeConfig = Field(default_factory=ComputeConfig)
    container: ContainerConfig = Field(default_factory=ContainerConfig)
    bootstrap: BootstrapConfig = Field(default_factory=BootstrapConfig)

    @field_validator("project_name")
    @classmethod
    def validate_project_name(cls, value: str) -> str:
        if not _PROJECT_RE.match(value):
            raise ValueError(
                "project_name must be 3-32 chars of lowercase letters, digits or '-', "
                "starting with a letter."
            )
        return value

    @field_validator("vpc_cidr")
    @classmethod
    def validate_vpc_cidr(cls, value: str) -> str:
        return str(ipaddress.ip_network(value, strict=True))

    @field_validator("availability_zones")
    @classmethod
    def validate_zones(cls, value: List[str]) -> List[str]:
        zones = list(dict.fromkeys(value))
        if len(zones) < 2:
            raise ValueError("At least two distinct availability zones are required.")
        return zones

    def to_yaml(self, *, sort_keys: bool = False) -> str:
        return yaml.safe_dump(self.model_dump(mode="json"), sort_keys=sort_keys)

    @classmethod
    def from_yaml(cls, yaml_str: str) -> StackConfig:
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data)
