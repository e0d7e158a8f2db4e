"""
Shared fixtures: a scripted command runner for the reconciler, stack secrets,
a stack config with the canonical /24 layout, and an in-memory provider.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple, Union

import pytest

from tierstack.models.bootstrap import BootstrapPayload, RegistryCredentials, RetryPolicy
from tierstack.models.stack_config import StackConfig
from tierstack.models.stack_settings import StackSecrets
from tierstack.providers.local import LocalStateProvider
from tierstack.utils.async_command_runner import CommandError

Outcome = Union[str, Exception]

REGISTRY_TOKEN = "dckr_pat_s3cr3t-token"
DB_PASSWORD = "p@ss/word:42"


class FakeRunner:
    """
    Stands in for `run_command`. Outcomes are scripted per command prefix and
    consumed in order; the last outcome repeats. The most recently scripted
    matching prefix wins. Unscripted commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[List[str], Dict[str, Any]]] = []
        self._script: List[Tuple[Tuple[str, ...], List[Outcome]]] = []

    def script(self, prefix: Tuple[str, ...], *outcomes: Outcome) -> None:
        self._script.append((prefix, list(outcomes)))

    async def __call__(self, command: List[str], **kwargs: Any) -> str:
        self.calls.append((list(command), kwargs))
        for prefix, outcomes in reversed(self._script):
            if tuple(command[: len(prefix)]) == prefix:
                outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome
        return ""

    def commands(self, prefix: Optional[Tuple[str, ...]] = None) -> List[List[str]]:
        return [
            c for c, _ in self.calls if prefix is None or tuple(c[: len(prefix)]) == prefix
        ]


def command_failure(code: int = 1) -> CommandError:
    return CommandError(f"Command failed with return code {code}.", code)


@pytest.fixture
def fail():
    return command_failure


@pytest.fixture
def registry_token() -> str:
    return REGISTRY_TOKEN


@pytest.fixture
def fake_runner() -> FakeRunner:
    runner = FakeRunner()
    runner.script(("docker", "ps"), "pharma-app")
    return runner


@pytest.fixture
def payload(tmp_path) -> BootstrapPayload:
    return BootstrapPayload(
        registry=RegistryCredentials(username="acme", token=REGISTRY_TOKEN),
        image="acme/pharma-webapp:latest",
        environment={"NEXT_PUBLIC_CLERK_SIGN_IN_URL": "/sign-in"},
        secret_environment={"DATABASE_URL": "postgresql://u:p@db:5432/app"},
        retry=RetryPolicy(attempts=5, delay_seconds=0),
        log_path=str(tmp_path / "user-data.log"),
        env_file_dir=str(tmp_path),
    )


@pytest.fixture
def stack_secrets() -> StackSecrets:
    return StackSecrets(
        registry_username="acme",
        registry_token=REGISTRY_TOKEN,
        database_password=DB_PASSWORD,
        auth_service_secret_key="sk_test_auth",
        auth_service_public_key="pk_test_auth",
        payment_gateway_secret_key="sk_test_pay",
        payment_gateway_public_key="pk_test_pay",
    )


@pytest.fixture
def stack_config(tmp_path) -> StackConfig:
    return StackConfig(
        project_name="pharma",
        availability_zones=["us-east-1a", "us-east-1b"],
        public_subnet_cidrs=["10.0.1.0/24", "10.0.2.0/24"],
        app_subnet_cidrs=["10.0.3.0/24", "10.0.4.0/24"],
        db_subnet_cidrs=["10.0.5.0/24", "10.0.6.0/24"],
        compute={"private_key_path": str(tmp_path / "key.pem")},
    )


@pytest.fixture
def provider() -> LocalStateProvider:
    return LocalStateProvider()
