"""Subprocess helpers: version probing and stopping running instances."""

from __future__ import annotations

import asyncio
import os
import signal
import time
from pathlib import Path

from shipwright.logging import get_logger
from shipwright.release.identity import ReleaseIdentity

log = get_logger("shipwright.client.process")


async def run_cmd(*argv: str, timeout: float = 120, cwd: Path | None = None) -> str | None:
    """Run a command and return stdout, or None on failure."""
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        log.warning("command_error", command=argv[0], error=str(exc))
        return None

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        log.warning("command_timed_out", command=argv[0], timeout=timeout)
        return None

    if proc.returncode != 0:
        log.warning(
            "command_failed",
            command=argv[0],
            returncode=proc.returncode,
            stderr=stderr.decode(errors="replace")[:500],
        )
        return None
    return stdout.decode(errors="replace")


async def probe_version(binary: Path, timeout: float = 10.0) -> str | None:
    """Ask *binary* for its version and return the semantic part.

    The binary is expected to print ``<name> <version>`` or just
    ``<version>``; the version may be a full build string.
    """
    if not binary.is_file():
        return None
    output = await run_cmd(str(binary), "--version", timeout=timeout)
    if output is None:
        return None
    for token in output.split():
        version = ReleaseIdentity.semantic_of(token)
        if version is not None:
            return version
    log.warning("version_unparseable", binary=str(binary), output=output[:200])
    return None


async def find_running(binary: Path) -> list[int]:
    """PIDs of processes whose command line references *binary*."""
    try:
        proc = await asyncio.create_subprocess_exec(
            "pgrep",
            "-f",
            str(binary),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except FileNotFoundError:
        log.debug("pgrep_unavailable")
        return []
    stdout, _ = await proc.communicate()
    own = os.getpid()
    return [int(line) for line in stdout.decode().split() if line.isdigit() and int(line) != own]


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def terminate(pids: list[int], grace: float = 5.0) -> None:
    """SIGTERM every pid, wait up to *grace* seconds, then SIGKILL survivors."""
    if not pids:
        return
    for pid in pids:
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            continue
    log.info("processes_signalled", pids=pids, signal="SIGTERM")

    deadline = time.monotonic() + grace
    remaining = [pid for pid in pids if _alive(pid)]
    while remaining and time.monotonic() < deadline:
        await asyncio.sleep(0.1)
        remaining = [pid for pid in remaining if _alive(pid)]

    for pid in remaining:
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            continue
    if remaining:
        log.warning("processes_killed", pids=remaining)


async def stop_instances(binary: Path, grace: float = 5.0) -> list[int]:
    """Stop every running instance of *binary*; return the pids found."""
    pids = await find_running(binary)
    await terminate(pids, grace)
    return pids
