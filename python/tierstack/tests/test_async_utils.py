"""
Tests for the async retry decorator, the subprocess runner and the tmpfs
secret file helper.
"""

import os
import stat

import pytest

from tierstack.utils.async_command_runner import (
    CommandError,
    registry_rate_limit_parser,
    run_command,
)
from tierstack.utils.async_retry import async_retry
from tierstack.utils.ephemeral_file import ephemeral_file


class Transient(Exception):
    pass


@pytest.mark.asyncio
async def test_retry_stops_at_first_success():
    calls = []

    @async_retry(retries=5, delay=0, retry_on=(Transient,))
    async def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise Transient()
        return "ok"

    assert await flaky() == "ok"
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_retry_does_not_catch_other_errors():
    calls = []

    @async_retry(retries=5, delay=0, retry_on=(Transient,))
    async def broken() -> None:
        calls.append(1)
        raise KeyError("nope")

    with pytest.raises(KeyError):
        await broken()
    assert len(calls) == 1


def test_retry_requires_an_attempt():
    with pytest.raises(ValueError):
        async_retry(retries=0)


@pytest.mark.asyncio
async def test_run_command_feeds_stdin():
    assert await run_command(["cat"], input_data="from-stdin") == "from-stdin"


@pytest.mark.asyncio
async def test_run_command_failure_hides_details_when_sensitive():
    with pytest.raises(CommandError) as excinfo:
        await run_command(["sh", "-c", "echo hidden-value >&2; exit 3"])
    assert excinfo.value.return_code == 3
    assert "hidden-value" not in str(excinfo.value)


@pytest.mark.asyncio
async def test_run_command_accepts_listed_return_codes():
    assert await run_command(["sh", "-c", "exit 1"], successful_return_codes=[0, 1]) == ""


@pytest.mark.asyncio
async def test_run_command_missing_binary():
    with pytest.raises(CommandError, match="Could not start"):
        await run_command(["definitely-not-a-real-binary-tierstack"])


def test_rate_limit_parser():
    assert registry_rate_limit_parser("Error: toomanyrequests: slow down")
    assert registry_rate_limit_parser("manifest unknown") is None


@pytest.mark.asyncio
async def test_ephemeral_file_lifecycle(tmp_path):
    async with ephemeral_file("app.env", "KEY=value\n", parent_dir=str(tmp_path)) as path:
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        with open(path, encoding="utf-8") as handle:
            assert handle.read() == "KEY=value\n"
        directory = os.path.dirname(path)
    assert not os.path.exists(path)
    assert not os.path.exists(directory)
