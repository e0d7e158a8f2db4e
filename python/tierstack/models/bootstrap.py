"""
tierstack/models/bootstrap.py

Pydantic models for node bootstrap:
  - NodeState (Enum) and the allowed transitions between states
  - RetryPolicy
  - BootstrapVariables: the named template variables the compute module resolves
  - RegistryCredentials, RuntimeSpec, ContainerSpec
  - BootstrapPayload: everything a node needs to reach a running container

Secret-bearing fields are SecretStr. They serialize masked unless the dump is
done with `context={"reveal_secrets": True}`, which only happens when the
payload is embedded into a node's startup data.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    SerializationInfo,
    field_serializer,
)
from pydantic.alias_generators import to_camel


class NodeState(str, Enum):
    INIT = "Init"
    RUNTIME_INSTALLING = "RuntimeInstalling"
    RUNTIME_READY = "RuntimeReady"
    AUTHENTICATING = "Authenticating"
    IMAGE_PULLING = "ImagePulling"
    CONTAINER_RUNNING = "ContainerRunning"
    FAILED = "Failed"


NODE_TRANSITIONS: Dict[NodeState, FrozenSet[NodeState]] = {
    NodeState.INIT: frozenset({NodeState.RUNTIME_INSTALLING, NodeState.FAILED}),
    NodeState.RUNTIME_INSTALLING: frozenset(
        {NodeState.RUNTIME_READY, NodeState.FAILED}
    ),
    NodeState.RUNTIME_READY: frozenset({NodeState.AUTHENTICATING, NodeState.FAILED}),
    NodeState.AUTHENTICATING: frozenset({NodeState.IMAGE_PULLING, NodeState.FAILED}),
    NodeState.IMAGE_PULLING: frozenset(
        {NodeState.CONTAINER_RUNNING, NodeState.FAILED}
    ),
    NodeState.CONTAINER_RUNNING: frozenset(),
    NodeState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({NodeState.CONTAINER_RUNNING, NodeState.FAILED})


def _reveal(value: SecretStr, info: SerializationInfo) -> str:
    if info.context and info.context.get("reveal_secrets"):
        return value.get_secret_value()
    return str(value)


class RetryPolicy(BaseModel):
    """Bounded retry: fixed delay, no backoff growth, no jitter."""

    attempts: int = Field(default=5, ge=1)
    delay_seconds: float = Field(default=15.0, ge=0.0)


class BootstrapVariables(BaseModel):
    """
    The template variables handed from the compute module to every node.

    Field names are snake_case; `model_dump(by_alias=True)` yields the
    camelCase variable names (registryUsername, databaseConnectionURL, ...).
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    registry_username: str
    registry_token: SecretStr
    database_connection_url: SecretStr = Field(alias="databaseConnectionURL")
    direct_connection_url: SecretStr = Field(alias="directConnectionURL")
    auth_service_secret_key: SecretStr
    auth_service_public_key: str
    payment_gateway_secret_key: SecretStr
    payment_gateway_public_key: str
    container_image_reference: str

    @field_serializer(
        "registry_token",
        "database_connection_url",
        "direct_connection_url",
        "auth_service_secret_key",
        "payment_gateway_secret_key",
    )
    def _serialize_secret(self, value: SecretStr, info: SerializationInfo) -> str:
        return _reveal(value, info)


class RegistryCredentials(BaseModel):
    username: str
    token: SecretStr
    server: Optional[str] = None

    @field_serializer("token")
    def _serialize_token(self, value: SecretStr, info: SerializationInfo) -> str:
        return _reveal(value, info)


class RuntimeSpec(BaseModel):
    """How the container runtime is installed and started on the node."""

    package_manager: str = "yum"
    package: str = "docker"
    binary: str = "docker"
    service: str = "docker"
    refresh_packages: bool = True


class ContainerSpec(BaseModel):
    name: str = "pharma-app"
    host_port: int = Field(default=80, ge=1, le=65535)
    container_port: int = Field(default=3000, ge=1, le=65535)
    restart_policy: str = "always"


class BootstrapPayload(BaseModel):
    """
    Everything the reconciler needs on a node.

    Attributes:
        registry: Credentials for the image registry login.
        image: Fully qualified image reference to pull and run.
        environment: Literal container environment, in order.
        secret_environment: Secret container environment, in order.
        container: Logical container name, port mapping and restart policy.
        runtime: Container runtime install spec.
        retry: Retry policy for the network-bound steps.
        log_path: Append-only node-local log.
        env_file_dir: Memory-backed directory for the transient env-file.
    """

    registry: RegistryCredentials
    image: str
    environment: Dict[str, str] = Field(default_factory=dict)
    secret_environment: Dict[str, SecretStr] = Field(default_factory=dict)
    container: ContainerSpec = Field(default_factory=ContainerSpec)
    runtime: RuntimeSpec = Field(default_factory=RuntimeSpec)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    log_path: str = "/var/log/user-data.log"
    env_file_dir: str = "/dev/shm"

    @field_serializer("secret_environment")
    def _serialize_secret_env(
        self, value: Dict[str, SecretStr], info: SerializationInfo
    ) -> Dict[str, str]:
        return {key: _reveal(val, info) for key, val in value.items()}

    def container_environment(self) -> Dict[str, str]:
        """Full container environment, secrets revealed. Only for the env-file."""
        merged = dict(self.environment)
        merged.update(
            {key: val.get_secret_value() for key, val in self.secret_environment.items()}
        )
        return merged

    def to_wire(self) -> str:
        """JSON form embedded into node startup data, secrets included."""
        return self.model_dump_json(context={"reveal_secrets": True})
