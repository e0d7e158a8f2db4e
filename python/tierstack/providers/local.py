"""
tierstack/providers/local.py

A provider backend that keeps resources in memory, optionally persisted to a
JSON state file, and fabricates the attributes a cloud would generate (ids,
ARNs, endpoints, addresses). It backs `tierctl stack apply/destroy` dry runs
and the test-suite.

Autoscaling groups launch `desired_capacity` instance records into their
subnets, so the compute module's running-node output has something to report.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import os
import uuid
from typing import Any, Dict, List, Optional

import aiofiles

from tierstack.models.resources import (
    AUTOSCALING_GROUP_TAG,
    NAME_TAG,
    PROJECT_TAG,
    ProviderResource,
    ResourceKind,
)
from tierstack.models.validator import validate_type
from tierstack.providers.base import ProviderPermanentError

logger = logging.getLogger(__name__)


_ID_PREFIX: Dict[ResourceKind, str] = {
    ResourceKind.NETWORK: "vpc",
    ResourceKind.SUBNET: "subnet",
    ResourceKind.INTERNET_GATEWAY: "igw",
    ResourceKind.ELASTIC_IP: "eipalloc",
    ResourceKind.NAT_GATEWAY: "nat",
    ResourceKind.ROUTE_TABLE: "rtb",
    ResourceKind.SECURITY_GROUP: "sg",
    ResourceKind.DB_SUBNET_GROUP: "dbsubnet",
    ResourceKind.DATABASE_INSTANCE: "db",
    ResourceKind.LOAD_BALANCER: "alb",
    ResourceKind.TARGET_GROUP: "tg",
    ResourceKind.LISTENER: "listener",
    ResourceKind.KEY_PAIR: "key",
    ResourceKind.LAUNCH_TEMPLATE: "lt",
    ResourceKind.AUTOSCALING_GROUP: "asg",
    ResourceKind.SCALING_POLICY: "policy",
    ResourceKind.INSTANCE: "i",
}

# First host addresses of every subnet are reserved by the cloud.
_RESERVED_HOSTS = 4


class LocalStateProvider:
    """In-memory provider with optional JSON persistence.

    Args:
        region: Region used when fabricating ARNs and endpoints.
        state_path: If set, state is written there after every mutation.
    """

    def __init__(self, region: str = "us-east-1", state_path: Optional[str] = None):
        self.region = region
        self.state_path = state_path
        self._resources: Dict[str, ProviderResource] = {}

    @classmethod
    async def load(
        cls, state_path: str, region: str = "us-east-1"
    ) -> LocalStateProvider:
        """Open a provider backed by `state_path`, reading it if it exists."""
        provider = cls(region=region, state_path=state_path)
        if os.path.exists(state_path):
            async with aiofiles.open(state_path, "r", encoding="utf-8") as handle:
                raw = json.loads(await handle.read())
            records = validate_type(
                raw.get("resources", []), List[ProviderResource], f"state file {state_path}"
            )
            provider._resources = {r.id: r for r in records}
        return provider

    @property
    def resources(self) -> List[ProviderResource]:
        return list(self._resources.values())

    async def create(
        self, kind: ResourceKind, attributes: Dict[str, Any], tags: Dict[str, str]
    ) -> ProviderResource:
        existing = self._find_logical(kind, tags)
        if existing is not None:
            logger.info("Reusing %s %s (tag de-duplication)", kind.value, existing.id)
            return existing

        resource_id = self._new_id(kind, attributes)
        generated = self._generate(kind, resource_id, attributes)
        resource = ProviderResource(
            id=resource_id,
            kind=kind,
            attributes={**attributes, **generated},
            tags=dict(tags),
        )
        self._resources[resource_id] = resource
        logger.debug("Created %s %s", kind.value, resource_id)

        if kind == ResourceKind.AUTOSCALING_GROUP:
            self._launch_group_instances(resource)

        await self._persist()
        return resource

    async def query(
        self,
        kind: Optional[ResourceKind] = None,
        tags: Optional[Dict[str, str]] = None,
    ) -> List[ProviderResource]:
        wanted = tags or {}
        return [
            r
            for r in self._resources.values()
            if (kind is None or r.kind == kind)
            and all(r.tags.get(k) == v for k, v in wanted.items())
        ]

    async def delete(self, resource_id: str) -> None:
        resource = self._resources.pop(resource_id, None)
        if resource is None:
            logger.debug("Delete of unknown resource %s ignored", resource_id)
            return

        if resource.kind == ResourceKind.AUTOSCALING_GROUP:
            group_name = resource.attributes["name"]
            members = await self.query(
                ResourceKind.INSTANCE, {AUTOSCALING_GROUP_TAG: group_name}
            )
            for inst in members:
                self._resources.pop(inst.id, None)

        logger.debug("Deleted %s %s", resource.kind.value, resource_id)
        await self._persist()

    def _find_logical(
        self, kind: ResourceKind, tags: Dict[str, str]
    ) -> Optional[ProviderResource]:
        if NAME_TAG not in tags:
            return None
        for r in self._resources.values():
            if (
                r.kind == kind
                and r.tags.get(NAME_TAG) == tags[NAME_TAG]
                and r.tags.get(PROJECT_TAG) == tags.get(PROJECT_TAG)
            ):
                return r
        return None

    def _new_id(self, kind: ResourceKind, attributes: Dict[str, Any]) -> str:
        if kind in (ResourceKind.DB_SUBNET_GROUP, ResourceKind.AUTOSCALING_GROUP):
            if "name" not in attributes:
                raise ProviderPermanentError(f"{kind.value} requires a 'name'.")
            return str(attributes["name"])
        return f"{_ID_PREFIX[kind]}-{uuid.uuid4().hex[:17]}"

    def _arn(self, service: str, resource: str) -> str:
        return f"arn:aws:{service}:{self.region}:000000000000:{resource}"

    def _generate(
        self, kind: ResourceKind, resource_id: str, attributes: Dict[str, Any]
    ) -> Dict[str, Any]:
        out: Dict[str, Any] = {"id": resource_id}

        if kind == ResourceKind.DATABASE_INSTANCE:
            identifier = attributes.get("identifier", resource_id)
            address = f"{identifier}.{uuid.uuid4().hex[:12]}.{self.region}.rds.amazonaws.com"
            port = int(attributes.get("port", 5432))
            out.update(
                address=address,
                port=port,
                endpoint=f"{address}:{port}",
                arn=self._arn("rds", f"db:{identifier}"),
            )
        elif kind == ResourceKind.LOAD_BALANCER:
            name = attributes.get("name", resource_id)
            out.update(
                dns_name=f"{name}-{uuid.uuid4().int % 10**10}.{self.region}.elb.amazonaws.com",
                arn=self._arn("elasticloadbalancing", f"loadbalancer/app/{name}"),
            )
        elif kind in (ResourceKind.TARGET_GROUP, ResourceKind.LISTENER):
            out["arn"] = self._arn("elasticloadbalancing", f"{kind.value}/{resource_id}")
        elif kind == ResourceKind.ELASTIC_IP:
            out["public_ip"] = self._public_ip()
        elif kind == ResourceKind.LAUNCH_TEMPLATE:
            out["latest_version"] = 1
        elif kind == ResourceKind.AUTOSCALING_GROUP:
            out["arn"] = self._arn("autoscaling", f"autoScalingGroup:{resource_id}")
        elif kind == ResourceKind.SCALING_POLICY:
            out["arn"] = self._arn("autoscaling", f"scalingPolicy:{resource_id}")
        elif kind == ResourceKind.INSTANCE:
            subnet_id = attributes.get("subnet_id")
            out["private_ip"] = self._next_private_ip(subnet_id) if subnet_id else None
            if attributes.get("associate_public_ip_address"):
                out["public_ip"] = self._public_ip()
        return out

    def _launch_group_instances(self, group: ProviderResource) -> None:
        subnets: List[str] = list(group.attributes.get("subnet_ids", []))
        count = int(group.attributes.get("desired_capacity", 0))
        if count and not subnets:
            raise ProviderPermanentError("Autoscaling group has no subnets to launch into.")
        group_name = group.attributes["name"]

        for index in range(count):
            subnet_id = subnets[index % len(subnets)]
            instance_id = self._new_id(ResourceKind.INSTANCE, {})
            self._resources[instance_id] = ProviderResource(
                id=instance_id,
                kind=ResourceKind.INSTANCE,
                attributes={
                    "id": instance_id,
                    "subnet_id": subnet_id,
                    "private_ip": self._next_private_ip(subnet_id),
                    "launch_template_id": group.attributes.get("launch_template_id"),
                    "state": "running",
                },
                tags={
                    PROJECT_TAG: group.tags.get(PROJECT_TAG, ""),
                    NAME_TAG: f"{group_name}-{index}",
                    AUTOSCALING_GROUP_TAG: group_name,
                },
            )

    def _next_private_ip(self, subnet_id: str) -> Optional[str]:
        subnet = self._resources.get(subnet_id)
        if subnet is None or "cidr_block" not in subnet.attributes:
            return None
        used = sum(
            1
            for r in self._resources.values()
            if r.kind == ResourceKind.INSTANCE and r.attributes.get("subnet_id") == subnet_id
        )
        network = ipaddress.ip_network(subnet.attributes["cidr_block"])
        return str(network.network_address + _RESERVED_HOSTS + used)

    def _public_ip(self) -> str:
        # TEST-NET-3 documentation range; never routable.
        return str(ipaddress.ip_address("203.0.113.0") + (uuid.uuid4().int % 254) + 1)

    async def _persist(self) -> None:
        if not self.state_path:
            return
        payload = {
            "resources": [r.model_dump(mode="json") for r in self._resources.values()]
        }
        # Launch templates carry user-data with secrets.
        staging = f"{self.state_path}.tmp"
        fd = os.open(staging, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        os.fchmod(fd, 0o600)
        os.close(fd)
        async with aiofiles.open(staging, "w", encoding="utf-8") as handle:
            await handle.write(json.dumps(payload, indent=2))
        os.replace(staging, self.state_path)
