"""
tierstack/cli/tierctl.py

Entry point for `tierctl`. Each subcommand lives in `tierstack.cli.<name>` and
runs as its own `python -m` process, so its argparse usage and exit code are
passed through unchanged.

Usage:
    tierctl stack plan --config stack.yaml
"""

import sys
import subprocess

SUBCOMMANDS = ("stack",)


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in SUBCOMMANDS:
        print("Usage: tierctl <subcommand> [args...]")
        print(f"Subcommands: {', '.join(SUBCOMMANDS)}")
        sys.exit(1)

    subcommand = sys.argv[1]
    cmd = [sys.executable, "-m", f"tierstack.cli.{subcommand}"] + sys.argv[2:]
    sys.exit(subprocess.call(cmd))


if __name__ == "__main__":
    main()
