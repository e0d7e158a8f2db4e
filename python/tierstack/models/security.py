"""
tierstack/models/security.py

Pydantic models for the security-group reference graph:
  - SecurityGroupName (Enum) with its tier rank
  - Protocol (Enum)
  - PortRange
  - SecurityEdge: group-to-group allow rule
  - CidrIngress: address-range allow rule into an outer group
  - EgressRule
"""

from __future__ import annotations

import ipaddress
from enum import Enum
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SecurityGroupName(str, Enum):
    PUBLIC = "public"
    ADMIN = "admin"
    APP = "app"
    DB = "db"


# Higher rank => more private. Admin sits beside public on the outer layer.
TIER_RANK: Dict[SecurityGroupName, int] = {
    SecurityGroupName.PUBLIC: 0,
    SecurityGroupName.ADMIN: 0,
    SecurityGroupName.APP: 1,
    SecurityGroupName.DB: 2,
}


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"
    ALL = "-1"


class PortRange(BaseModel):
    """Inclusive port range. `PortRange.single(22)` for one port."""

    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0, le=65535)
    end: int = Field(ge=0, le=65535)

    @model_validator(mode="after")
    def check_order(self) -> PortRange:
        if self.start > self.end:
            raise ValueError(f"Port range start {self.start} > end {self.end}.")
        return self

    @classmethod
    def single(cls, port: int) -> PortRange:
        return cls(start=port, end=port)

    @classmethod
    def every(cls) -> PortRange:
        return cls(start=0, end=65535)

    def __str__(self) -> str:
        return str(self.start) if self.start == self.end else f"{self.start}-{self.end}"


class SecurityEdge(BaseModel):
    """Directed, protocol/port-scoped allow rule from one group to another."""

    model_config = ConfigDict(frozen=True)

    source: SecurityGroupName
    destination: SecurityGroupName
    protocol: Protocol = Protocol.TCP
    ports: PortRange
    description: str = ""

    def __str__(self) -> str:
        return (
            f"{self.source.value} -> {self.destination.value} "
            f"({self.protocol.value}/{self.ports})"
        )


class CidrIngress(BaseModel):
    """Ingress from an address range outside the VPC (internet, operator network)."""

    model_config = ConfigDict(frozen=True)

    destination: SecurityGroupName
    cidr: str
    protocol: Protocol = Protocol.TCP
    ports: PortRange
    description: str = ""

    @field_validator("cidr")
    @classmethod
    def validate_cidr(cls, value: str) -> str:
        return str(ipaddress.ip_network(value, strict=False))


class EgressRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: SecurityGroupName
    cidr: str = "0.0.0.0/0"
    protocol: Protocol = Protocol.ALL
    ports: PortRange = Field(default_factory=PortRange.every)
