"""Manifest and artifact retrieval.

Sources are either HTTP(S) servers, fetched with httpx, or local
directories (plain paths or ``file://`` URLs) laid out the same way, which
is how air-gapped devices are updated from removable media.
"""

from __future__ import annotations

import json
import shutil
from pathlib import Path
from urllib.parse import unquote, urlparse

import httpx

from shipwright.constants import CHUNK_SIZE, MANIFEST_FILENAME
from shipwright.errors import NetworkFailure
from shipwright.logging import get_logger
from shipwright.release.manifest import Manifest, validate_channel

log = get_logger("shipwright.client.fetcher")


def _is_remote(location: str) -> bool:
    return urlparse(location).scheme in ("http", "https")


def _local_path(location: str) -> Path:
    parsed = urlparse(location)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    return Path(location).expanduser()


class ReleaseSource:
    """Reads channel manifests and release artifacts from one update root."""

    def __init__(
        self,
        base: str,
        *,
        manifest_timeout: float = 30.0,
        download_timeout: float = 600.0,
    ) -> None:
        self._base = base.rstrip("/")
        self._manifest_timeout = manifest_timeout
        self._download_timeout = download_timeout

    @property
    def base(self) -> str:
        return self._base

    def manifest_location(self, channel: str) -> str:
        return f"{self._base}/{validate_channel(channel)}/{MANIFEST_FILENAME}"

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    async def fetch_manifest(self, channel: str) -> Manifest:
        """Fetch and parse the channel manifest.

        Any transport, status or parse problem raises ``NetworkFailure``.
        """
        location = self.manifest_location(channel)
        log.debug("manifest_fetch", location=location)
        raw = await self._read(location, timeout=self._manifest_timeout)
        if raw is None:
            raise NetworkFailure(f"Manifest not found: {location}")

        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("manifest is not a JSON object")
            manifest = Manifest.from_dict(data)
        except (ValueError, KeyError, TypeError) as exc:
            log.warning("manifest_parse_failed", location=location, error=str(exc))
            raise NetworkFailure(f"Malformed manifest at {location}: {exc}") from exc

        if manifest.channel and manifest.channel != validate_channel(channel):
            raise NetworkFailure(
                f"Manifest at {location} belongs to channel {manifest.channel!r}"
            )
        manifest.channel = validate_channel(channel)
        return manifest

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    async def download(self, url: str, dest: Path) -> Path:
        """Stream *url* to *dest*. Raises ``NetworkFailure`` on any error."""
        dest.parent.mkdir(parents=True, exist_ok=True)
        log.info("download_started", url=url, dest=str(dest))

        if not _is_remote(url):
            source = _local_path(url)
            try:
                shutil.copyfile(source, dest)
            except OSError as exc:
                dest.unlink(missing_ok=True)
                raise NetworkFailure(f"Unable to read {url}: {exc}") from exc
            return dest

        try:
            async with httpx.AsyncClient(
                timeout=self._download_timeout, follow_redirects=True
            ) as client:
                async with client.stream("GET", url) as resp:
                    if resp.status_code != 200:
                        raise NetworkFailure(f"Download failed: {url} ({resp.status_code})")
                    with dest.open("wb") as handle:
                        async for chunk in resp.aiter_bytes(CHUNK_SIZE):
                            handle.write(chunk)
        except httpx.HTTPError as exc:
            dest.unlink(missing_ok=True)
            log.warning("download_failed", url=url, error=str(exc))
            raise NetworkFailure(f"Download failed: {url}: {exc}") from exc
        except NetworkFailure:
            dest.unlink(missing_ok=True)
            raise

        log.info("download_completed", url=url, size=dest.stat().st_size)
        return dest

    async def fetch_optional(self, url: str) -> bytes | None:
        """Fetch a small sidecar file; a 404 or missing file returns None."""
        return await self._read(url, timeout=self._manifest_timeout)

    async def _read(self, location: str, *, timeout: float) -> bytes | None:
        if not _is_remote(location):
            path = _local_path(location)
            if not path.exists():
                return None
            try:
                return path.read_bytes()
            except OSError as exc:
                raise NetworkFailure(f"Unable to read {location}: {exc}") from exc

        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                resp = await client.get(location)
        except httpx.HTTPError as exc:
            log.warning("fetch_failed", location=location, error=str(exc))
            raise NetworkFailure(f"Unable to reach {location}: {exc}") from exc

        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            log.warning("fetch_bad_status", location=location, status=resp.status_code)
            raise NetworkFailure(f"Unexpected status {resp.status_code} from {location}")
        return resp.content
