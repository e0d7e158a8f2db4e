"""
Tests for the YAML stack configuration and environment-provided secrets.
"""

import pytest
from pydantic import ValidationError

from tierstack.deployment.subnets import allocate_subnets
from tierstack.models.network import Tier
from tierstack.models.stack_config import ComputeConfig, LoadBalancerConfig, StackConfig
from tierstack.models.stack_settings import StackSecrets

EXAMPLE_YAML = """
project_name: pharma
region: us-east-1
availability_zones: [us-east-1a, us-east-1b]
public_subnet_cidrs: [10.0.1.0/24, 10.0.2.0/24]
app_subnet_cidrs: [10.0.3.0/24, 10.0.4.0/24]
db_subnet_cidrs: [10.0.5.0/24, 10.0.6.0/24]
compute:
  min_size: 2
  desired_capacity: 2
  max_size: 6
container:
  image_reference: registry.example.com/acme/pharma-webapp:1.4.2
"""


def test_from_yaml_applies_defaults():
    config = StackConfig.from_yaml(EXAMPLE_YAML)
    assert config.vpc_cidr == "10.0.0.0/16"
    assert config.database.port == 5432
    assert config.compute.max_size == 6
    assert config.container.resolve_image("acme") == (
        "registry.example.com/acme/pharma-webapp:1.4.2"
    )
    assert config.bootstrap.retry.attempts == 5
    assert config.bootstrap.retry.delay_seconds == 15.0


def test_yaml_round_trip():
    config = StackConfig.from_yaml(EXAMPLE_YAML)
    assert StackConfig.from_yaml(config.to_yaml()) == config


def test_default_image_uses_registry_username():
    config = StackConfig(project_name="pharma")
    assert config.container.resolve_image("acme") == "acme/pharma-webapp:latest"


@pytest.mark.parametrize("name", ["Pharma", "p", "9lives", "trailing-", "has_underscore"])
def test_project_name_is_validated(name):
    with pytest.raises(ValidationError):
        StackConfig(project_name=name)


def test_single_zone_is_rejected():
    with pytest.raises(ValidationError, match="availability zones"):
        StackConfig(project_name="pharma", availability_zones=["us-east-1a", "us-east-1a"])


def test_non_network_vpc_cidr_is_rejected():
    with pytest.raises(ValidationError):
        StackConfig(project_name="pharma", vpc_cidr="10.0.0.1/16")


def test_capacity_ordering():
    with pytest.raises(ValidationError, match="min_size"):
        ComputeConfig(min_size=3, desired_capacity=2, max_size=4)


def test_secrets_read_from_environment(monkeypatch):
    values = {
        "TIERSTACK_REGISTRY_USERNAME": "acme",
        "TIERSTACK_REGISTRY_TOKEN": "token-value",
        "TIERSTACK_DATABASE_PASSWORD": "db-password",
        "TIERSTACK_AUTH_SERVICE_SECRET_KEY": "sk_auth",
        "TIERSTACK_AUTH_SERVICE_PUBLIC_KEY": "pk_auth",
        "TIERSTACK_PAYMENT_GATEWAY_SECRET_KEY": "sk_pay",
        "TIERSTACK_PAYMENT_GATEWAY_PUBLIC_KEY": "pk_pay",
    }
    for key, value in values.items():
        monkeypatch.setenv(key, value)

    secrets = StackSecrets()
    assert secrets.registry_username == "acme"
    assert secrets.database_password.get_secret_value() == "db-password"
    assert "db-password" not in repr(secrets)
    assert secrets.registry_server is None


def test_repeated_zones_collapse_in_order():
    config = StackConfig(
        project_name="pharma",
        availability_zones=["us-east-1a", "us-east-1a", "us-east-1b"],
    )
    assert config.availability_zones == ["us-east-1a", "us-east-1b"]


def test_repeated_zones_still_allocate_one_subnet_per_zone():
    config = StackConfig(
        project_name="pharma",
        availability_zones=["us-east-1a", "us-east-1a", "us-east-1b"],
        app_subnet_cidrs=["10.0.3.0/24", "10.0.4.0/24"],
    )
    subnets = allocate_subnets(
        config.vpc_cidr,
        config.availability_zones,
        app=config.app_subnet_cidrs,
    )
    app_zones = [s.availability_zone for s in subnets if s.tier == Tier.APP]
    assert app_zones == ["us-east-1a", "us-east-1b"]


def test_https_port_only_public_with_a_certificate():
    assert LoadBalancerConfig().public_ports() == [80]
    assert LoadBalancerConfig(certificate_arn="arn:cert").public_ports() == [80, 443]
