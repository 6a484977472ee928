"""Subprocess helper shared by the host providers."""
from __future__ import annotations

import subprocess
from collections.abc import Mapping, Sequence

from ..errors import HostError


def run_command(
    args: Sequence[str],
    *,
    error: type[HostError],
    check: bool = True,
    input_text: str | None = None,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess[str]:
    """Run *args* capturing output, raising *error* when it cannot run or fails."""
    command = list(args)
    try:
        result = subprocess.run(  # noqa: S603
            command,
            capture_output=True,
            text=True,
            check=False,
            input=input_text,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as exc:
        raise error(f"{command[0]} not found: {exc}") from exc
    if check and result.returncode != 0:
        raise error(describe_failure(command, result))
    return result


def describe_failure(command: Sequence[str], result: subprocess.CompletedProcess[str]) -> str:
    """Return a one-line description of a failed command."""
    stdout = getattr(result, "stdout", "") or ""
    stderr = getattr(result, "stderr", "") or ""
    message = stderr.strip() or stdout.strip() or "no output"
    return f"{' '.join(command)} failed (exit {result.returncode}): {message}"


__all__ = ["describe_failure", "run_command"]
