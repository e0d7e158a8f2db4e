"""
tierstack/utils/async_command_runner.py

Asynchronous subprocess runner used by the node bootstrap reconciler. Commands
are always executed as an argv list (never through a shell), so secret values
can only reach a child process through stdin or a file, never its arguments.

Usage example:
    from tierstack.utils.async_command_runner import run_command, CommandError

    try:
        await run_command(
            ["docker", "login", "-u", user, "--password-stdin"],
            input_data=token,
        )
    except CommandError as err:
        print(f"Command failed: {err}")
"""

from __future__ import annotations

import asyncio
import os
from typing import Callable, Dict, List, Optional

from tierstack.utils.async_retry import async_retry


class CommandError(Exception):
    """Represents a failure when executing a command.

    Attributes:
        return_code (Optional[int]): The exit code if available.
    """

    def __init__(self, message: str, return_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.return_code = return_code


def registry_rate_limit_parser(stderr: str) -> Optional[str]:
    """Return a short message if stderr shows a container registry pull limit."""
    low = stderr.lower()
    if (
        "429 too many requests" in low
        or "toomanyrequests" in low
        or "pull rate limit" in low
    ):
        return (
            "Container registry rate limit encountered. Authenticate or "
            "upgrade the registry plan to avoid pull limit errors."
        )
    return None


async def run_command(
    command: List[str],
    *,
    sensitive: bool = True,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[str] = None,
    input_data: Optional[str] = None,
    successful_return_codes: Optional[List[int]] = None,
    retries: int = 1,
    retry_delay: float = 1.0,
    error_parser: Optional[Callable[[str], Optional[str]]] = None,
) -> str:
    """
    Executes a local command in a subprocess and returns its stripped stdout.

    If the return code is not in `successful_return_codes`, raises CommandError.
    When `error_parser` is given and returns a message for stderr, that message
    becomes the error text. With `sensitive=True` (the default) the command line,
    stdout and stderr are left out of the error message.

    Args:
        command: The command and arguments to execute.
        sensitive: If True, hides command details in the raised error.
        env: Additional environment variables to add or override.
        cwd: Working directory for the command.
        input_data: If provided, written to the child's stdin.
        successful_return_codes: Return codes treated as success. Defaults to [0].
        retries: Total attempts before giving up. Defaults to 1 (no retry);
            callers that own a retry policy wrap this function instead.
        retry_delay: Delay in seconds between attempts.
        error_parser: Callback mapping stderr to a short message, or None.

    Returns:
        str: The captured stdout of the command.

    Raises:
        CommandError: If the command cannot be started or fails after all attempts.
    """
    ok_codes = successful_return_codes if successful_return_codes is not None else [0]

    @async_retry(retries=retries, delay=retry_delay, retry_on=(CommandError,))
    async def _inner_run_command() -> str:
        proc_env = None
        if env:
            proc_env = os.environ.copy()
            proc_env.update(env)

        stdin = (
            asyncio.subprocess.PIPE
            if input_data is not None
            else asyncio.subprocess.DEVNULL
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=proc_env,
                cwd=cwd,
            )
        except OSError as exc:
            raise CommandError(f"Could not start '{command[0]}': {exc}") from exc

        stdout_bytes, stderr_bytes = await proc.communicate(
            input=input_data.encode() if input_data is not None else None
        )
        stdout_str = stdout_bytes.decode(errors="replace").strip()
        stderr_str = stderr_bytes.decode(errors="replace").strip()

        if proc.returncode not in ok_codes:
            short_message = error_parser(stderr_str) if error_parser else None
            if short_message is not None:
                raise CommandError(short_message, proc.returncode)

            detail = ""
            if not sensitive:
                detail = (
                    f"\nCommand: {' '.join(command)}"
                    f"\nStdout: {stdout_str}"
                    f"\nStderr: {stderr_str}"
                )
            raise CommandError(
                f"Command failed with return code {proc.returncode}.{detail}",
                proc.returncode,
            )

        return stdout_str

    return await _inner_run_command()
