"""
tierstack/bootstrap/user_data.py

Renders the node startup script that carries the BootstrapPayload. The payload
is embedded base64-encoded in a quoted heredoc, decoded into tmpfs with an
owner-only umask, handed to the reconciler by path and removed on exit. No
secret value ever appears on a command line.
"""

from __future__ import annotations

import base64
import re
import shlex

from tierstack.models.bootstrap import BootstrapPayload

PAYLOAD_MARKER = "TIERSTACK_PAYLOAD"
DEFAULT_PAYLOAD_PATH = "/run/tierstack/payload.json"

_PAYLOAD_RE = re.compile(
    rf"<<'{PAYLOAD_MARKER}'\n(?P<body>[A-Za-z0-9+/=\n]*?)\n{PAYLOAD_MARKER}\n"
)

_TEMPLATE = """#!/bin/bash
set -euo pipefail
umask 077
exec >> {log_path} 2>&1
echo "tierstack bootstrap starting at $(date -Is)"

PAYLOAD_PATH={payload_path}
mkdir -p "$(dirname "$PAYLOAD_PATH")"
trap 'rm -f "$PAYLOAD_PATH"' EXIT
base64 -d > "$PAYLOAD_PATH" <<'{marker}'
{body}
{marker}

{command} --payload "$PAYLOAD_PATH" --log-file {log_path}
"""


def render_user_data(
    payload: BootstrapPayload,
    reconciler_command: str,
    payload_path: str = DEFAULT_PAYLOAD_PATH,
) -> str:
    """Return the startup script for one node."""
    encoded = base64.b64encode(payload.to_wire().encode("utf-8")).decode("ascii")
    body = "\n".join(encoded[i : i + 76] for i in range(0, len(encoded), 76))
    return _TEMPLATE.format(
        log_path=shlex.quote(payload.log_path),
        payload_path=shlex.quote(payload_path),
        marker=PAYLOAD_MARKER,
        body=body,
        command=reconciler_command,
    )


def encode_user_data(script: str) -> str:
    """Base64 form expected by launch templates."""
    return base64.b64encode(script.encode("utf-8")).decode("ascii")


def decode_user_data(encoded: str) -> str:
    return base64.b64decode(encoded).decode("utf-8")


def extract_payload(script: str) -> BootstrapPayload:
    """
    Recover the embedded BootstrapPayload from a rendered script.

    Raises:
        ValueError: If the script carries no payload block.
    """
    match = _PAYLOAD_RE.search(script)
    if match is None:
        raise ValueError("No bootstrap payload found in user-data script.")
    raw = base64.b64decode(match.group("body").replace("\n", ""))
    return BootstrapPayload.model_validate_json(raw)
