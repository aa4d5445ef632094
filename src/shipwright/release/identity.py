"""Release identity: semantic version plus build traceability."""

from __future__ import annotations

import platform
import re
import shutil
import subprocess  # nosec B404
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any

from shipwright.constants import UNKNOWN_REVISION
from shipwright.logging import get_logger
from shipwright.versioning import parse_semver

log = get_logger("shipwright.release.identity")

# <semver>-<revision>-<YYYY-MM-DD>
_FULL_VERSION_RE = re.compile(
    r"^(?P<semver>v?\d+\.\d+\.\d+(?:-[a-zA-Z0-9.]+)?)"
    r"-(?P<revision>[0-9a-fA-F]{4,40}|unknown)"
    r"-(?P<date>\d{4}-\d{2}-\d{2})$"
)


@dataclass(frozen=True)
class ReleaseIdentity:
    """Who built what, from which revision, when, and for which platform.

    ``full_version`` is a display string only; it embeds a commit hash and
    a date and must never be used to order releases.
    """

    semantic_version: str
    source_revision: str
    build_date: str
    target_platform: str

    def __post_init__(self) -> None:
        if parse_semver(self.semantic_version) is None:
            raise ValueError(f"Not a semantic version: {self.semantic_version!r}")

    @property
    def full_version(self) -> str:
        return f"{self.semantic_version}-{self.source_revision}-{self.build_date}"

    @staticmethod
    def semantic_of(text: str) -> str | None:
        """Recover the semantic version from a full or plain version string."""
        text = text.strip()
        m = _FULL_VERSION_RE.match(text)
        if m is not None:
            return m.group("semver").lstrip("v")
        if parse_semver(text) is not None:
            return text.lstrip("v")
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.semantic_version,
            "full_version": self.full_version,
            "git_commit": self.source_revision,
            "build_date": self.build_date,
            "target_platform": self.target_platform,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReleaseIdentity:
        return cls(
            semantic_version=data["version"],
            source_revision=data.get("git_commit", UNKNOWN_REVISION),
            build_date=data["build_date"],
            target_platform=data.get("target_platform", ""),
        )


def host_platform() -> str:
    """Return a ``<machine>-<system>`` triple for the build host."""
    machine = platform.machine().lower() or "unknown"
    system = platform.system().lower() or "unknown"
    if system == "linux":
        libc, _ = platform.libc_ver()
        abi = "gnu" if libc == "glibc" else (libc or "unknown")
        return f"{machine}-unknown-linux-{abi}"
    if system == "darwin":
        return f"{machine}-apple-darwin"
    if system == "windows":
        return f"{machine}-pc-windows-msvc"
    return f"{machine}-unknown-{system}"


def source_revision(source_dir: Path | None) -> str:
    """Short commit hash of *source_dir*, or ``unknown`` outside a git checkout."""
    if source_dir is None or shutil.which("git") is None:
        return UNKNOWN_REVISION
    try:
        proc = subprocess.run(  # nosec B603 B607
            ["git", "-C", str(source_dir), "rev-parse", "--short", "HEAD"],
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        log.warning("git_revision_failed", error=str(exc))
        return UNKNOWN_REVISION
    if proc.returncode != 0:
        return UNKNOWN_REVISION
    return proc.stdout.strip() or UNKNOWN_REVISION


def derive_identity(
    version: str,
    *,
    source_dir: Path | None = None,
    revision: str | None = None,
    build_date: str | None = None,
    target_platform: str | None = None,
) -> ReleaseIdentity:
    """Build a ``ReleaseIdentity`` from the build environment.

    Explicit arguments win over what the environment reports, which keeps
    reproducible builds and tests deterministic.
    """
    identity = ReleaseIdentity(
        semantic_version=version.lstrip("v"),
        source_revision=revision or source_revision(source_dir),
        build_date=build_date or date.today().isoformat(),
        target_platform=target_platform or host_platform(),
    )
    log.info("release_identity", **identity.to_dict())
    return identity
