"""
tierstack/bootstrap/payload.py

Builds the per-node BootstrapPayload from database outputs, credentials and
the container settings. Also builds the named BootstrapVariables handed to
every node.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple
from urllib.parse import quote

from pydantic import SecretStr

from tierstack.models.bootstrap import (
    BootstrapPayload,
    BootstrapVariables,
    ContainerSpec,
    RegistryCredentials,
)
from tierstack.models.stack_config import BootstrapConfig, ContainerConfig
from tierstack.models.stack_settings import StackSecrets

# Container environment names consumed by the web app.
DATABASE_URL_ENV = "DATABASE_URL"
DIRECT_URL_ENV = "DIRECT_URL"
AUTH_SECRET_ENV = "CLERK_SECRET_KEY"
AUTH_PUBLIC_ENV = "NEXT_PUBLIC_CLERK_PUBLISHABLE_KEY"
PAYMENT_SECRET_ENV = "PAYSTACK_SECRET_KEY"
PAYMENT_PUBLIC_ENV = "NEXT_PUBLIC_PAYSTACK_PUBLIC_KEY"


def connection_urls(
    host: str, port: int, database: str, username: str, password: SecretStr
) -> Tuple[SecretStr, SecretStr]:
    """
    Returns (pooled, direct) PostgreSQL connection URLs.

    Credentials are percent-encoded. The pooled URL pins the public schema;
    the direct URL is the bare connection string.
    """
    user = quote(username, safe="")
    secret = quote(password.get_secret_value(), safe="")
    base = f"postgresql://{user}:{secret}@{host}:{port}/{database}"
    return SecretStr(f"{base}?schema=public"), SecretStr(base)


def build_bootstrap_variables(
    *,
    secrets: StackSecrets,
    container: ContainerConfig,
    db_host: str,
    db_port: int,
    db_name: str,
    db_username: str,
) -> BootstrapVariables:
    database_url, direct_url = connection_urls(
        db_host, db_port, db_name, db_username, secrets.database_password
    )
    return BootstrapVariables(
        registry_username=secrets.registry_username,
        registry_token=secrets.registry_token,
        database_connection_url=database_url,
        direct_connection_url=direct_url,
        auth_service_secret_key=secrets.auth_service_secret_key,
        auth_service_public_key=secrets.auth_service_public_key,
        payment_gateway_secret_key=secrets.payment_gateway_secret_key,
        payment_gateway_public_key=secrets.payment_gateway_public_key,
        container_image_reference=container.resolve_image(secrets.registry_username),
    )


def build_bootstrap_payload(
    variables: BootstrapVariables,
    container: ContainerConfig,
    bootstrap: BootstrapConfig,
    registry_server: Optional[str] = None,
) -> BootstrapPayload:
    """Map the named variables onto registry login, image and container environment."""
    environment: Dict[str, str] = {
        AUTH_PUBLIC_ENV: variables.auth_service_public_key,
        PAYMENT_PUBLIC_ENV: variables.payment_gateway_public_key,
    }
    environment.update(container.literal_environment)

    secret_environment: Dict[str, SecretStr] = {
        DATABASE_URL_ENV: variables.database_connection_url,
        DIRECT_URL_ENV: variables.direct_connection_url,
        AUTH_SECRET_ENV: variables.auth_service_secret_key,
        PAYMENT_SECRET_ENV: variables.payment_gateway_secret_key,
    }

    return BootstrapPayload(
        registry=RegistryCredentials(
            username=variables.registry_username,
            token=variables.registry_token,
            server=registry_server,
        ),
        image=variables.container_image_reference,
        environment=environment,
        secret_environment=secret_environment,
        container=ContainerSpec(
            name=container.name,
            host_port=container.host_port,
            container_port=container.container_port,
            restart_policy=container.restart_policy,
        ),
        runtime=bootstrap.runtime,
        retry=bootstrap.retry,
        log_path=bootstrap.log_path,
    )
