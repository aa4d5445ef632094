"""Channel manifests: the documents update clients poll.

One manifest per channel lives at ``<manifest_root>/<channel>/manifest.json``.
Channels are independent; a release published to ``beta`` never shows up
in ``stable``.
"""

from __future__ import annotations

import json
import shutil
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from shipwright.constants import CHANNELS, MANIFEST_FILENAME
from shipwright.logging import get_logger
from shipwright.versioning import parse_semver, same_version, sort_newest_first

if TYPE_CHECKING:
    from shipwright.release.packager import Package

log = get_logger("shipwright.release.manifest")


def _now_iso() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def validate_channel(channel: str) -> str:
    channel = channel.strip().lower()
    if channel not in CHANNELS:
        raise ValueError(f"Unknown channel {channel!r}; expected one of {', '.join(CHANNELS)}")
    return channel


# ------------------------------------------------------------------
# Data models
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ManifestEntry:
    """One published release within a channel."""

    version: str
    release_date: str
    download_url: str
    checksum: str
    size_bytes: int
    changelog: tuple[str, ...] = ()
    signature: str | None = None  # URL of the detached signature file
    min_system_version: str | None = None
    critical: bool = False
    rollback_allowed: bool = True

    def __post_init__(self) -> None:
        if parse_semver(self.version) is None:
            raise ValueError(f"Not a semantic version: {self.version!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "release_date": self.release_date,
            "changelog": list(self.changelog),
            "download_url": self.download_url,
            "checksum": self.checksum,
            "signature": self.signature,
            "size": self.size_bytes,
            "min_system_version": self.min_system_version,
            "critical": self.critical,
            "rollback_allowed": self.rollback_allowed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ManifestEntry:
        signature = data.get("signature")
        return cls(
            version=str(data["version"]),
            release_date=str(data.get("release_date", "")),
            download_url=str(data["download_url"]),
            checksum=str(data["checksum"]),
            size_bytes=int(data.get("size", 0)),
            changelog=tuple(str(line) for line in data.get("changelog", [])),
            signature=signature if signature and signature != "none" else None,
            min_system_version=data.get("min_system_version"),
            critical=bool(data.get("critical", False)),
            rollback_allowed=bool(data.get("rollback_allowed", True)),
        )


@dataclass
class Manifest:
    """All releases of one channel, newest first.

    ``current_version`` records the publisher's own version and is
    informational only. Clients compare their installed version against
    ``latest_version``.
    """

    channel: str
    current_version: str = ""
    latest_version: str = ""
    releases: list[ManifestEntry] = field(default_factory=list)
    last_check: str | None = None

    def entry_for(self, version: str) -> ManifestEntry | None:
        for entry in self.releases:
            if same_version(entry.version, version):
                return entry
        return None

    @property
    def latest_entry(self) -> ManifestEntry | None:
        if not self.latest_version:
            return None
        return self.entry_for(self.latest_version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "current_version": self.current_version,
            "latest_version": self.latest_version,
            "last_check": self.last_check,
            "releases": [entry.to_dict() for entry in self.releases],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Manifest:
        channel = data.get("channel") or data.get("update_channel") or ""
        items = data.get("releases", [])
        if not isinstance(items, list):
            raise ValueError("releases is not a list")
        if not all(isinstance(item, dict) for item in items):
            raise ValueError("releases contains a non-object entry")
        releases = [ManifestEntry.from_dict(item) for item in items]
        return cls(
            channel=str(channel).lower(),
            current_version=str(data.get("current_version", "")),
            latest_version=str(data.get("latest_version", "")),
            releases=releases,
            last_check=data.get("last_check"),
        )


def entry_for_package(
    package: Package,
    *,
    download_url: str,
    signature_url: str | None = None,
    changelog: list[str] | None = None,
    min_system_version: str | None = None,
    critical: bool = False,
    rollback_allowed: bool = True,
) -> ManifestEntry:
    """Build the manifest entry describing *package*."""
    identity = package.identity
    lines = changelog or [
        f"Release {identity.semantic_version}",
        f"Git commit: {identity.source_revision}",
        f"Build date: {identity.build_date}",
    ]
    return ManifestEntry(
        version=identity.semantic_version,
        release_date=package.created_at or _now_iso(),
        download_url=download_url,
        checksum=package.sha256,
        size_bytes=package.size_bytes,
        changelog=tuple(lines),
        signature=signature_url,
        min_system_version=min_system_version,
        critical=critical,
        rollback_allowed=rollback_allowed,
    )


# ------------------------------------------------------------------
# Publisher
# ------------------------------------------------------------------


class ManifestPublisher:
    """Aggregates signed releases per channel into polled manifest documents."""

    def __init__(self, manifest_root: Path, publisher_version: str = "") -> None:
        self._root = Path(manifest_root)
        self._publisher_version = publisher_version

    def channel_dir(self, channel: str) -> Path:
        return self._root / validate_channel(channel)

    def manifest_path(self, channel: str) -> Path:
        return self.channel_dir(channel) / MANIFEST_FILENAME

    def load(self, channel: str) -> Manifest:
        """Return the channel's manifest, or an empty one if none was published."""
        channel = validate_channel(channel)
        path = self.manifest_path(channel)
        if not path.exists():
            return Manifest(channel=channel)
        return Manifest.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def publish(self, channel: str, entry: ManifestEntry) -> Manifest:
        """Add or replace *entry* in the channel and rewrite its manifest."""
        channel = validate_channel(channel)
        manifest = self.load(channel)

        kept = [e for e in manifest.releases if not same_version(e.version, entry.version)]
        replaced = len(kept) != len(manifest.releases)
        by_version = {e.version: e for e in [*kept, entry]}
        manifest.releases = [by_version[v] for v in sort_newest_first(list(by_version))]
        manifest.latest_version = manifest.releases[0].version
        manifest.current_version = self._publisher_version or manifest.current_version
        manifest.last_check = _now_iso()
        manifest.channel = channel

        self._write(channel, manifest)
        log.info(
            "manifest_published",
            channel=channel,
            version=entry.version,
            latest=manifest.latest_version,
            replaced=replaced,
        )
        return manifest

    def publish_package(
        self,
        channel: str,
        package: Package,
        *,
        base_url: str,
        changelog: list[str] | None = None,
        min_system_version: str | None = None,
        critical: bool = False,
        rollback_allowed: bool = True,
    ) -> Manifest:
        """Copy *package* into the channel directory and publish its entry."""
        target_dir = self.channel_dir(channel)
        target_dir.mkdir(parents=True, exist_ok=True)
        for source in (package.artifact_path, package.signature_path):
            shutil.copy2(source, target_dir / source.name)

        channel_url = f"{base_url.rstrip('/')}/{validate_channel(channel)}"
        entry = entry_for_package(
            package,
            download_url=f"{channel_url}/{package.artifact_path.name}",
            signature_url=f"{channel_url}/{package.signature_path.name}",
            changelog=changelog,
            min_system_version=min_system_version,
            critical=critical,
            rollback_allowed=rollback_allowed,
        )
        return self.publish(channel, entry)

    def _write(self, channel: str, manifest: Manifest) -> None:
        path = self.manifest_path(channel)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(manifest.to_dict(), indent=2), encoding="utf-8")
        tmp_path.replace(path)


__all__ = [
    "Manifest",
    "ManifestEntry",
    "ManifestPublisher",
    "entry_for_package",
    "validate_channel",
]
