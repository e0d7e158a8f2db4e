"""
tierstack/utils/ephemeral_file.py

Async context manager for a single short-lived secret file in a memory-backed
directory (default `/dev/shm`). The file is created owner-only (0600), filled
with the given content, and removed together with its directory on exit.
"""

import os
import tempfile
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import aiofiles


@asynccontextmanager
async def ephemeral_file(
    file_name: str,
    content: str,
    *,
    prefix: str = "ephemeral-",
    parent_dir: str = "/dev/shm",
) -> AsyncGenerator[str, None]:
    """
    Write `content` to `<parent_dir>/<prefix>XXXX/<file_name>` and yield its path.

    Args:
        file_name: Name of the file inside the ephemeral directory.
        content: Text written to the file.
        prefix: Prefix for the ephemeral directory name.
        parent_dir: Where the ephemeral directory is created.

    Yields:
        str: Absolute path of the written file.
    """
    ephemeral_dir = tempfile.mkdtemp(dir=parent_dir, prefix=prefix)
    path = os.path.join(ephemeral_dir, file_name)

    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        os.close(fd)
        async with aiofiles.open(path, "w", encoding="utf-8") as handle:
            await handle.write(content)
        yield path
    finally:
        if os.path.lexists(path):
            os.remove(path)
        if os.path.isdir(ephemeral_dir):
            os.rmdir(ephemeral_dir)
