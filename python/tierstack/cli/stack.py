#!/usr/bin/env python3
"""
tierstack/cli/stack.py

CLI for a three-tier stack described by a YAML StackConfig. Credentials come
from TIERSTACK_* environment variables (see StackSecrets), never from flags.

  1) "validate": Load the config and run every configuration-time check.
  2) "plan": Validate, then print the module apply order.
  3) "apply": Create the stack against the local state-file provider.
  4) "destroy": Delete every resource of the stack, reverse apply order.
  5) "render-user-data": Print the node startup script for given DB endpoint.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict

import aiofiles
import yaml
from pydantic import ValidationError

from tierstack.bootstrap.payload import build_bootstrap_payload, build_bootstrap_variables
from tierstack.bootstrap.user_data import render_user_data
from tierstack.deployment.graph import ConfigurationError
from tierstack.deployment.stack import deploy_stack, destroy_stack, plan_stack
from tierstack.models.stack_config import StackConfig
from tierstack.models.stack_settings import StackSecrets
from tierstack.providers.base import ProviderError
from tierstack.providers.local import LocalStateProvider
from tierstack.secrets.ssh_keys import load_or_create_key_pair

# Placeholders for commands that only validate; nothing is created or written.
_PLAN_ONLY_PUBLIC_KEY = "ssh-rsa AAAA plan-only"


def _plan_only_secrets() -> StackSecrets:
    return StackSecrets(
        registry_username="plan-only",
        registry_token="plan-only",
        database_password="plan-only",
        auth_service_secret_key="plan-only",
        auth_service_public_key="plan-only",
        payment_gateway_secret_key="plan-only",
        payment_gateway_public_key="plan-only",
    )


async def _load_config(path: str) -> StackConfig:
    async with aiofiles.open(path, "r", encoding="utf-8") as handle:
        return StackConfig.from_yaml(await handle.read())


def _fail(message: str) -> None:
    print(f"ERROR: {message}", file=sys.stderr)
    sys.exit(1)


async def _run_validate(args: argparse.Namespace) -> None:
    config = await _load_config(args.config)
    plan_stack(config, _plan_only_secrets(), _PLAN_ONLY_PUBLIC_KEY)
    print(f"Stack '{config.project_name}' is valid.")


async def _run_plan(args: argparse.Namespace) -> None:
    config = await _load_config(args.config)
    plan = plan_stack(config, _plan_only_secrets(), _PLAN_ONLY_PUBLIC_KEY)
    print(f"Apply order for '{config.project_name}':")
    for index, name in enumerate(plan.order, start=1):
        print(f"  {index}. {name}")


async def _run_apply(args: argparse.Namespace) -> None:
    config = await _load_config(args.config)
    secrets = StackSecrets()
    key_pair = load_or_create_key_pair(config.compute.private_key_path)
    if key_pair.created:
        print(f"Wrote new SSH private key to {key_pair.private_key_path} (mode 0400).")
    else:
        print(f"Reusing SSH private key at {key_pair.private_key_path}.")

    provider = await LocalStateProvider.load(args.state, region=config.region)
    outputs = await deploy_stack(
        config,
        secrets,
        key_pair.public_key,
        provider,
        retries=args.retries,
        retry_delay=args.retry_delay,
    )

    load_balancer = outputs["load_balancer"]
    compute = outputs["compute"]
    print(f"Load balancer endpoint: http://{load_balancer['dns_name']}")
    print(f"Bastion: {compute['ssh_user']}@{compute['bastion_public_ip']}")
    summary: Dict[str, Any] = {
        "database_endpoint": outputs["database"]["endpoint"],
        "autoscaling_group": compute["autoscaling_group_name"],
        "nodes": compute["nodes"],
    }
    print(json.dumps(summary, indent=2))


async def _run_destroy(args: argparse.Namespace) -> None:
    config = await _load_config(args.config)
    provider = await LocalStateProvider.load(args.state, region=config.region)
    deleted = await destroy_stack(
        config, provider, retries=args.retries, retry_delay=args.retry_delay
    )
    if not deleted:
        print(f"No resources found for '{config.project_name}'.")
        return
    print(f"Deleted {len(deleted)} resource(s) of '{config.project_name}'.")


async def _run_render_user_data(args: argparse.Namespace) -> None:
    config = await _load_config(args.config)
    secrets = StackSecrets()
    variables = build_bootstrap_variables(
        secrets=secrets,
        container=config.container,
        db_host=args.db_host,
        db_port=args.db_port or config.database.port,
        db_name=config.database.name,
        db_username=config.database.username,
    )
    payload = build_bootstrap_payload(
        variables, config.container, config.bootstrap, secrets.registry_server
    )
    print(render_user_data(payload, config.bootstrap.reconciler_command), end="")


_HANDLERS = {
    "validate": _run_validate,
    "plan": _run_plan,
    "apply": _run_apply,
    "destroy": _run_destroy,
    "render-user-data": _run_render_user_data,
}


def main() -> None:
    """CLI entry point for validating, applying and destroying a stack."""
    parser = argparse.ArgumentParser(
        prog="tierstack.cli.stack",
        description="Provision or destroy a three-tier web application stack.",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable debug logging."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("validate", "Run all configuration-time checks."),
        ("plan", "Validate and print the module apply order."),
        ("apply", "Create the stack."),
        ("destroy", "Delete every resource of the stack."),
        ("render-user-data", "Print the node startup script."),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument(
            "--config", required=True, help="Path to the stack YAML file."
        )
        if name in ("apply", "destroy"):
            sub.add_argument(
                "--state",
                default="tierstack-state.json",
                help="Local provider state file (default: tierstack-state.json).",
            )
            sub.add_argument(
                "--retries",
                type=int,
                default=5,
                help="Attempts per provider call on transient errors (default: 5).",
            )
            sub.add_argument(
                "--retry-delay",
                type=float,
                default=2.0,
                help="Seconds between provider retries (default: 2.0).",
            )
        if name == "render-user-data":
            sub.add_argument(
                "--db-host", required=True, help="Database endpoint host."
            )
            sub.add_argument("--db-port", type=int, help="Database port.")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        asyncio.run(_HANDLERS[args.command](args))
    except ValidationError as exc:
        # Only locations and messages; input values may hold credentials.
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in exc.errors()
        )
        _fail(f"Invalid configuration or missing TIERSTACK_* credentials: {problems}")
    except yaml.YAMLError as exc:
        _fail(f"Could not parse config YAML: {exc}")
    except ConfigurationError as exc:
        _fail(f"{type(exc).__name__}: {exc}")
    except ProviderError as exc:
        _fail(f"Provider error: {exc}")
    except (OSError, ValueError) as exc:
        _fail(str(exc))


if __name__ == "__main__":
    main()
