"""Run read-only OS commands and return their output."""

from __future__ import annotations

import asyncio
import json
import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from discovery_signals.exceptions import CommandError, ParseError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def current_platform() -> str:
    """Return ``"darwin"``, ``"win32"`` or ``"linux"`` for the host OS."""
    if sys.platform.startswith("win"):
        return "win32"
    if sys.platform == "darwin":
        return "darwin"
    return "linux"


@dataclass
class CommandResult:
    stdout: str
    returncode: int
    stderr: str = ""


class ProcessProbe:
    """Thin wrapper around ``subprocess.run`` for OS-native queries.

    Commands are always passed as argument lists; nothing is run through a
    shell. Every failure mode (missing binary, timeout, non-zero exit) is
    raised as ``CommandError`` so callers can fall through to the next
    detection strategy.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout

    def run_command(self, args: list[str], timeout: float | None = None) -> CommandResult:
        """Run ``args`` and return stripped stdout."""
        effective_timeout = timeout if timeout is not None else self.timeout
        logger.debug("Running command: %s", " ".join(args))
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=effective_timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandError(
                f"{args[0]} timed out after {effective_timeout}s"
            ) from e
        except FileNotFoundError as e:
            raise CommandError(f"{args[0]} not found") from e
        except OSError as e:
            raise CommandError(f"Failed to run {args[0]}: {e}") from e

        stdout = (result.stdout or "").strip()
        stderr = (result.stderr or "").strip()
        if result.returncode != 0:
            raise CommandError(
                f"{args[0]} exited with status {result.returncode}: {stderr}",
                returncode=result.returncode,
                stderr=stderr,
            )
        return CommandResult(stdout=stdout, returncode=result.returncode, stderr=stderr)

    def run_text(self, args: list[str], timeout: float | None = None) -> str:
        return self.run_command(args, timeout=timeout).stdout

    def run_json(self, args: list[str], timeout: float | None = None) -> Any:
        """Run ``args`` and parse stdout as JSON."""
        output = self.run_text(args, timeout=timeout)
        try:
            return json.loads(output)
        except json.JSONDecodeError as e:
            raise ParseError(f"Malformed JSON from {args[0]}: {e}") from e

    def read_plist_json(self, path: Path | str, timeout: float | None = None) -> Any:
        """Convert a (binary) property list to JSON with ``plutil``."""
        return self.run_json(
            ["plutil", "-convert", "json", "-o", "-", str(path)],
            timeout=timeout,
        )

    async def arun_command(self, args: list[str], timeout: float | None = None) -> CommandResult:
        """Async version of run_command."""
        return await asyncio.to_thread(self.run_command, args, timeout)

    async def aread_plist_json(self, path: Path | str, timeout: float | None = None) -> Any:
        """Async version of read_plist_json."""
        return await asyncio.to_thread(self.read_plist_json, path, timeout)
