"""
tierstack/bootstrap/reconciler.py

Node bootstrap reconciler. Runs once at boot on every app node and drives the
node through

    Init -> RuntimeInstalling -> RuntimeReady -> Authenticating
         -> ImagePulling -> ContainerRunning

with any state allowed to move to Failed. Network-bound steps (package install,
image pull) are retried with a fixed delay; exhausting the budget, or any fatal
error, leaves the node in Failed. Secrets reach child processes only via stdin
or a 0600 env-file in tmpfs that is removed right after the container starts.

Exit code is 0 iff the node reached ContainerRunning.

Usage:
    python -m tierstack.bootstrap.reconciler --payload /run/tierstack/payload.json
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, List, Optional

import aiofiles

from tierstack.models.bootstrap import (
    NODE_TRANSITIONS,
    TERMINAL_STATES,
    BootstrapPayload,
    NodeState,
)
from tierstack.utils.async_command_runner import (
    CommandError,
    registry_rate_limit_parser,
    run_command,
)
from tierstack.utils.async_retry import async_retry
from tierstack.utils.ephemeral_file import ephemeral_file

logger = logging.getLogger(__name__)

CommandRunner = Callable[..., Awaitable[str]]


class BootstrapTransientError(Exception):
    """A step failed in a way that may succeed on retry."""


class BootstrapFatalError(Exception):
    """A step failed permanently; the node is marked Failed."""


class InvalidTransitionError(Exception):
    """A state move not allowed by the node state machine."""


def _env_file_content(environment: dict) -> str:
    lines = []
    for key, value in environment.items():
        if "\n" in value:
            raise BootstrapFatalError(
                f"Environment value for {key} contains a newline."
            )
        lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n"


class BootstrapReconciler:
    """
    Drives one node to a running container.

    Args:
        payload: Everything the node needs (credentials, image, environment).
        runner: Async command runner with the signature of `run_command`.
            Tests pass a fake.
    """

    def __init__(
        self, payload: BootstrapPayload, runner: CommandRunner = run_command
    ) -> None:
        self.payload = payload
        self.runner = runner
        self.state = NodeState.INIT
        self.history: List[NodeState] = [NodeState.INIT]

    def _transition(self, new_state: NodeState) -> None:
        if new_state not in NODE_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Illegal transition {self.state.value} -> {new_state.value}"
            )
        logger.info("Node state: %s -> %s", self.state.value, new_state.value)
        self.state = new_state
        self.history.append(new_state)

    async def _run(self, command: List[str], **kwargs: Any) -> str:
        return await self.runner(command, **kwargs)

    def _retrying(
        self, label: str
    ) -> Callable[[Callable[[], Awaitable[Any]]], Callable[[], Awaitable[Any]]]:
        policy = self.payload.retry
        return async_retry(
            retries=policy.attempts,
            delay=policy.delay_seconds,
            noisy=True,
            retry_on=(BootstrapTransientError,),
            label=label,
        )

    async def reconcile(self) -> NodeState:
        """Run every step in order. Returns the terminal state reached."""
        if self.state in TERMINAL_STATES:
            return self.state

        steps = [
            (NodeState.RUNTIME_INSTALLING, self.install_runtime),
            (NodeState.AUTHENTICATING, self.authenticate),
            (NodeState.IMAGE_PULLING, self.pull_image),
        ]
        try:
            for state, step in steps:
                self._transition(state)
                await step()
                if state == NodeState.RUNTIME_INSTALLING:
                    self._transition(NodeState.RUNTIME_READY)
            await self.run_container()
            self._transition(NodeState.CONTAINER_RUNNING)
        except (BootstrapTransientError, BootstrapFatalError) as exc:
            logger.error("Bootstrap failed in %s: %s", self.state.value, exc)
            self._transition(NodeState.FAILED)
        return self.state

    async def install_runtime(self) -> None:
        runtime = self.payload.runtime
        try:
            await self._run(["which", runtime.binary], successful_return_codes=[0])
            logger.info("Runtime '%s' already present; skipping install", runtime.binary)
        except CommandError:
            await self._install_packages()

        try:
            await self._run(["systemctl", "start", runtime.service])
            await self._run(["systemctl", "enable", runtime.service])
        except CommandError as exc:
            raise BootstrapFatalError(
                f"Could not start service '{runtime.service}': {exc}"
            ) from exc

    async def _install_packages(self) -> None:
        runtime = self.payload.runtime

        @self._retrying("runtime install")
        async def _attempt() -> None:
            try:
                if runtime.refresh_packages:
                    await self._run([runtime.package_manager, "update", "-y"])
                await self._run([runtime.package_manager, "install", "-y", runtime.package])
            except CommandError as exc:
                raise BootstrapTransientError(f"Runtime install failed: {exc}") from exc

        try:
            await _attempt()
        except BootstrapTransientError as exc:
            raise BootstrapFatalError(
                f"Runtime install failed after {self.payload.retry.attempts} attempts"
            ) from exc

    async def authenticate(self) -> None:
        registry = self.payload.registry
        command = [
            self.payload.runtime.binary,
            "login",
            "--username",
            registry.username,
            "--password-stdin",
        ]
        if registry.server:
            command.append(registry.server)
        try:
            await self._run(command, input_data=registry.token.get_secret_value())
        except CommandError as exc:
            raise BootstrapFatalError(f"Registry login failed: {exc}") from exc

    async def pull_image(self) -> None:
        binary = self.payload.runtime.binary

        @self._retrying("image pull")
        async def _attempt() -> None:
            try:
                await self._run(
                    [binary, "pull", self.payload.image],
                    error_parser=registry_rate_limit_parser,
                )
            except CommandError as exc:
                raise BootstrapTransientError(f"Image pull failed: {exc}") from exc

        try:
            await _attempt()
        except BootstrapTransientError as exc:
            raise BootstrapFatalError(
                f"Image pull failed after {self.payload.retry.attempts} attempts"
            ) from exc

    async def run_container(self) -> None:
        """Replace any same-named container, start it and check it is listed as running."""
        binary = self.payload.runtime.binary
        spec = self.payload.container

        try:
            await self._run([binary, "rm", "-f", spec.name], successful_return_codes=[0, 1])

            async with ephemeral_file(
                "container.env",
                _env_file_content(self.payload.container_environment()),
                prefix="tierstack-env-",
                parent_dir=self.payload.env_file_dir,
            ) as env_file:
                await self._run(
                    [
                        binary,
                        "run",
                        "-d",
                        "--name",
                        spec.name,
                        "--restart",
                        spec.restart_policy,
                        "-p",
                        f"{spec.host_port}:{spec.container_port}",
                        "--env-file",
                        env_file,
                        self.payload.image,
                    ]
                )

            listed = await self._run(
                [
                    binary,
                    "ps",
                    "--filter",
                    f"name=^{spec.name}$",
                    "--filter",
                    "status=running",
                    "--format",
                    "{{.Names}}",
                ]
            )
        except CommandError as exc:
            raise BootstrapFatalError(f"Container start failed: {exc}") from exc
        except OSError as exc:
            raise BootstrapFatalError(
                f"Could not write the container env-file: {exc}"
            ) from exc

        if spec.name not in listed.split():
            raise BootstrapFatalError(f"Container '{spec.name}' is not running.")
        logger.info("Container '%s' is running", spec.name)


def configure_node_logging(log_path: str) -> None:
    """Append-only node-local log plus stderr."""
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for handler in (
        logging.FileHandler(log_path, mode="a", encoding="utf-8"),
        logging.StreamHandler(sys.stderr),
    ):
        handler.setFormatter(formatter)
        root.addHandler(handler)


async def load_payload(path: str) -> BootstrapPayload:
    async with aiofiles.open(path, "r", encoding="utf-8") as handle:
        return BootstrapPayload.model_validate_json(await handle.read())


async def run_bootstrap(
    payload_path: str, runner: CommandRunner = run_command
) -> NodeState:
    payload = await load_payload(payload_path)
    return await BootstrapReconciler(payload, runner=runner).reconcile()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Bootstrap this node's app container.")
    parser.add_argument("--payload", required=True, help="Path to the payload JSON.")
    parser.add_argument(
        "--log-file",
        default="/var/log/user-data.log",
        help="Append-only node-local log file.",
    )
    args = parser.parse_args(argv)

    configure_node_logging(args.log_file)
    try:
        payload = asyncio.run(load_payload(args.payload))
    except (OSError, ValueError) as exc:
        logger.error("Could not load bootstrap payload: %s", exc)
        sys.exit(1)

    reconciler = BootstrapReconciler(payload, runner=run_command)
    final_state = asyncio.run(reconciler.reconcile())

    sys.exit(0 if final_state == NodeState.CONTAINER_RUNNING else 1)


if __name__ == "__main__":
    main()
