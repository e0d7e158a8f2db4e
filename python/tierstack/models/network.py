"""
tierstack/models/network.py

Pydantic models for the subnet layout of the three tiers.
"""

from __future__ import annotations

import ipaddress
from enum import Enum

from pydantic import BaseModel, ConfigDict, field_validator


class Tier(str, Enum):
    """Traffic-isolation layer with its own subnets and security group."""

    PUBLIC = "public"
    APP = "app"
    DB = "db"


class SubnetAllocation(BaseModel):
    """One subnet: its CIDR block, tier and availability zone."""

    model_config = ConfigDict(frozen=True)

    cidr: str
    tier: Tier
    availability_zone: str

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, value: str) -> str:
        try:
            return str(ipaddress.ip_network(value, strict=True))
        except ValueError as exc:
            raise ValueError(f"Invalid subnet CIDR '{value}': {exc}") from exc

    @property
    def network(self) -> ipaddress.IPv4Network | ipaddress.IPv6Network:
        return ipaddress.ip_network(self.cidr)
