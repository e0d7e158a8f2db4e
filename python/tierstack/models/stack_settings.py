# tierstack/models/stack_settings.py

from typing import Optional

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class StackSecrets(BaseSettings):
    """
    External credential inputs for a stack, read from the environment.
    Every field maps to a `TIERSTACK_`-prefixed variable, for example
    `TIERSTACK_REGISTRY_TOKEN` or `TIERSTACK_DATABASE_PASSWORD`.
    """

    model_config = SettingsConfigDict(env_prefix="TIERSTACK_")

    registry_username: str
    registry_token: SecretStr
    registry_server: Optional[str] = None
    database_password: SecretStr
    auth_service_secret_key: SecretStr
    auth_service_public_key: str
    payment_gateway_secret_key: SecretStr
    payment_gateway_public_key: str
