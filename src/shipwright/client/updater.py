"""Update client: check → download → verify → back up → apply → confirm.

Lifecycle of one session:
1. Take the installation lock (non-blocking)
2. Fetch the channel manifest and compare against the probed installed version
3. Stream the artifact into the download directory
4. Verify its checksum and detached signature
5. Back up the installed binary
6. Stop running instances and atomically swap in the new binary
7. Probe the new binary; restore the backup if it does not report the
   expected version

Failures never raise out of ``run_update``; they end the session with a
``SessionOutcome`` instead. The installed binary is only ever replaced by
an atomic rename.
"""

from __future__ import annotations

import asyncio
import json
import os
import shlex
import shutil
import tarfile
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from shipwright.client.backup import BackupManager, BackupRecord
from shipwright.client.fetcher import ReleaseSource
from shipwright.client.process import probe_version, run_cmd, stop_instances
from shipwright.client.session import SessionOutcome, SessionState, UpdateSession
from shipwright.constants import DEFAULT_CHANNEL, NOT_INSTALLED
from shipwright.context import InstallationContext
from shipwright.errors import (
    ApplyFailure,
    BuildFailure,
    ChecksumMismatch,
    LockContention,
    NetworkFailure,
    SignatureInvalid,
    SignatureMissing,
)
from shipwright.locking import FileLock
from shipwright.logging import get_logger
from shipwright.release.manifest import ManifestEntry, validate_channel
from shipwright.release.verifier import SignatureVerifier
from shipwright.versioning import same_version

if TYPE_CHECKING:
    from shipwright.config import Settings

log = get_logger("shipwright.client.updater")

_NETWORK_STAGES = frozenset(
    {
        SessionState.CHECKING,
        SessionState.UPDATE_AVAILABLE,
        SessionState.DOWNLOADING,
        SessionState.VERIFYING,
    }
)


class UpdateClient:
    """Runs update sessions against one installation."""

    def __init__(
        self,
        context: InstallationContext,
        source: ReleaseSource,
        *,
        verifier: SignatureVerifier | None = None,
        backups: BackupManager | None = None,
        channel: str = DEFAULT_CHANNEL,
        probe_timeout: float = 10.0,
        termination_grace: float = 5.0,
        session_timeout: float = 1800.0,
        build_command: str | None = None,
        build_timeout: int = 1200,
        source_dir: Path | None = None,
    ) -> None:
        self._ctx = context
        self._source = source
        self._verifier = verifier or SignatureVerifier(require_signature=True)
        self._backups = backups or BackupManager(context.backup_dir)
        self._channel = validate_channel(channel)
        self._probe_timeout = probe_timeout
        self._termination_grace = termination_grace
        self._session_timeout = session_timeout
        self._build_command = build_command
        self._build_timeout = build_timeout
        self._source_dir = source_dir

    @classmethod
    def from_settings(
        cls, settings: Settings, context: InstallationContext | None = None
    ) -> UpdateClient:
        ctx = context or InstallationContext.from_settings(settings)
        return cls(
            ctx,
            ReleaseSource(
                settings.update_url,
                manifest_timeout=settings.manifest_timeout,
                download_timeout=settings.download_timeout,
            ),
            verifier=SignatureVerifier(require_signature=settings.signature_required),
            backups=BackupManager(ctx.backup_dir, retention=settings.backup_retention),
            channel=settings.update_channel,
            probe_timeout=settings.probe_timeout,
            termination_grace=settings.termination_grace,
            session_timeout=settings.session_timeout,
            build_command=settings.build_command,
            build_timeout=settings.build_timeout,
        )

    @property
    def backups(self) -> BackupManager:
        return self._backups

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def installed_version(self) -> str:
        """Version reported by the installed binary, or ``not_installed``."""
        version = await probe_version(self._ctx.binary_path, self._probe_timeout)
        return version or NOT_INSTALLED

    async def check(self, channel: str | None = None) -> ManifestEntry | None:
        """Return the channel's latest entry if it differs from what is installed.

        Raises ``NetworkFailure`` when the manifest cannot be fetched.
        """
        channel = validate_channel(channel or self._channel)
        installed = await self.installed_version()
        manifest = await self._source.fetch_manifest(channel)
        entry = manifest.latest_entry
        if entry is None or same_version(entry.version, installed):
            log.info("update_check", channel=channel, installed=installed, available=False)
            return None
        log.info(
            "update_check",
            channel=channel,
            installed=installed,
            available=True,
            latest=entry.version,
            critical=entry.critical,
        )
        return entry

    # ------------------------------------------------------------------
    # Update session
    # ------------------------------------------------------------------

    async def run_update(self, channel: str | None = None) -> UpdateSession:
        """Run one update session and return it with its outcome set."""
        channel = validate_channel(channel or self._channel)
        session = UpdateSession(channel=channel, installed_version=NOT_INSTALLED)
        session.advance(SessionState.CHECKING)

        lock = FileLock(self._ctx.lock_path)
        try:
            lock.acquire(blocking=False)
        except LockContention as exc:
            session.finish(SessionOutcome.LOCK_CONTENTION, str(exc))
            log.warning("update_skipped", channel=channel, reason="lock_contention")
            return session

        try:
            await asyncio.wait_for(self._run(session), timeout=self._session_timeout)
        except TimeoutError:
            if session.outcome is None:
                reason = f"Session exceeded {self._session_timeout}s in {session.state.value}"
                # Stalls before anything on disk changes count as network failures
                if session.state in _NETWORK_STAGES:
                    session.finish(SessionOutcome.NETWORK_FAILURE, reason)
                else:
                    session.finish(SessionOutcome.TIMED_OUT, reason)
            log.error("update_timed_out", channel=channel, state=session.state.value)
        finally:
            self._discard_download(session)
            lock.release()

        log.info(
            "update_session_finished",
            channel=channel,
            outcome=session.outcome.value if session.outcome else None,
            installed=session.installed_version,
            target=session.target_version,
        )
        return session

    async def _run(self, session: UpdateSession) -> None:
        session.installed_version = await self.installed_version()

        try:
            manifest = await self._source.fetch_manifest(session.channel)
        except NetworkFailure as exc:
            session.finish(SessionOutcome.NETWORK_FAILURE, str(exc))
            return

        entry = manifest.latest_entry
        if entry is None or same_version(entry.version, session.installed_version):
            session.finish(SessionOutcome.UP_TO_DATE)
            log.info("update_not_needed", installed=session.installed_version)
            return

        session.candidate = entry
        session.advance(SessionState.UPDATE_AVAILABLE)
        log.info(
            "update_available",
            installed=session.installed_version,
            target=entry.version,
            critical=entry.critical,
        )

        session.advance(SessionState.DOWNLOADING)
        dest = self._ctx.download_dir / _artifact_name(entry)
        session.downloaded_path = dest
        try:
            await self._source.download(entry.download_url, dest)
        except NetworkFailure as exc:
            session.finish(SessionOutcome.NETWORK_FAILURE, str(exc))
            return

        session.advance(SessionState.VERIFYING)
        if not await self._verify(session, entry, dest):
            return

        session.advance(SessionState.BACKING_UP)
        if self._ctx.binary_path.is_file():
            try:
                session.backup = self._backups.backup(
                    self._ctx.binary_path, session.installed_version
                )
            except OSError as exc:
                session.finish(SessionOutcome.APPLY_FAILED, f"Backup failed: {exc}")
                log.error("backup_failed", error=str(exc))
                return
            session.backup_available = True
        else:
            log.info("backup_skipped", reason="no installed binary")

        session.advance(SessionState.APPLYING)
        await self._apply(session, entry, dest)

    async def _verify(self, session: UpdateSession, entry: ManifestEntry, dest: Path) -> bool:
        try:
            signature = None
            if entry.signature:
                signature = await self._source.fetch_optional(entry.signature)
        except NetworkFailure as exc:
            session.finish(SessionOutcome.NETWORK_FAILURE, str(exc))
            return False

        cert_path = self._ctx.certificate_for_verification()
        certificate = cert_path if cert_path.is_file() else None
        try:
            result = self._verifier.verify(dest, entry.checksum, signature, certificate)
        except ChecksumMismatch as exc:
            outcome, error = SessionOutcome.CHECKSUM_MISMATCH, str(exc)
        except SignatureMissing as exc:
            outcome, error = SessionOutcome.SIGNATURE_MISSING, str(exc)
        except SignatureInvalid as exc:
            outcome, error = SessionOutcome.SIGNATURE_INVALID, str(exc)
        else:
            session.verified = result.checksum_ok
            return True

        self._discard_download(session)
        session.finish(outcome, error)
        return False

    async def _apply(self, session: UpdateSession, entry: ManifestEntry, artifact: Path) -> None:
        binary = self._ctx.binary_path
        try:
            stopped = await stop_instances(binary, self._termination_grace)
            if stopped:
                log.info("instances_stopped", pids=stopped)
            staged = self._stage_binary(artifact)
            os.replace(staged, binary)
            log.info("binary_replaced", path=str(binary), version=entry.version)
            reported = await probe_version(binary, self._probe_timeout)
        except asyncio.CancelledError:
            await self._restore(session, "Cancelled while applying")
            raise
        except (OSError, tarfile.TarError, ApplyFailure) as exc:
            await self._restore(session, f"Apply failed: {exc}")
            return

        if reported is None or not same_version(reported, entry.version):
            await self._restore(
                session, f"Binary reports {reported or 'nothing'}, expected {entry.version}"
            )
            return

        session.advance(SessionState.VERIFIED)
        previous = session.installed_version
        session.installed_version = entry.version
        self._write_version_file(session, entry, previous)
        session.finish(SessionOutcome.UPDATED)
        log.info("update_applied", previous=previous, version=entry.version)

    def _stage_binary(self, artifact: Path) -> Path:
        """Place the new binary in a temp file beside the installed one."""
        install_dir = self._ctx.install_dir
        install_dir.mkdir(parents=True, exist_ok=True)
        staged = self._staged_path()

        if tarfile.is_tarfile(artifact):
            member_name = f"bin/{self._ctx.binary_name}"
            with tarfile.open(artifact, "r:*") as tar:
                try:
                    member = tar.getmember(member_name)
                except KeyError as exc:
                    raise ApplyFailure(f"{artifact.name} has no {member_name}") from exc
                if not member.isfile():
                    raise ApplyFailure(f"{member_name} in {artifact.name} is not a file")
                source = tar.extractfile(member)
                if source is None:
                    raise ApplyFailure(f"Unable to read {member_name} from {artifact.name}")
                with source, staged.open("wb") as out:
                    shutil.copyfileobj(source, out)
        else:
            shutil.copyfile(artifact, staged)

        staged.chmod(0o755)
        return staged

    def _staged_path(self) -> Path:
        return self._ctx.install_dir / f".{self._ctx.binary_name}.new"

    async def _restore(self, session: UpdateSession, reason: str) -> None:
        binary = self._ctx.binary_path
        log.error("update_failed", reason=reason, backup=session.backup_available)
        self._staged_path().unlink(missing_ok=True)

        if session.backup is None:
            # Nothing was installed before; leave nothing behind
            binary.unlink(missing_ok=True)
            session.finish(SessionOutcome.APPLY_FAILED, f"{reason}; no backup available")
            return

        try:
            self._backups.restore(session.backup, binary)
        except OSError as exc:
            session.finish(SessionOutcome.APPLY_FAILED, f"{reason}; restore failed: {exc}")
            log.error("restore_failed", error=str(exc))
            return

        session.advance(SessionState.ROLLED_BACK)
        restored = await probe_version(binary, self._probe_timeout)
        if restored is None:
            session.finish(
                SessionOutcome.APPLY_FAILED, f"{reason}; restored binary does not start"
            )
            log.error("restored_binary_unresponsive", path=str(binary))
            return
        session.installed_version = restored
        session.finish(SessionOutcome.ROLLED_BACK, reason)
        log.warning("update_rolled_back", version=restored, reason=reason)

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    async def rollback(self) -> BackupRecord:
        """Restore the most recent backup.

        Raises ``NoBackupAvailable`` (nothing modified) when the store is
        empty, ``LockContention`` when a session is running and
        ``ApplyFailure`` if the restored binary does not start.
        """
        with FileLock(self._ctx.lock_path):
            record = self._backups.latest()
            await stop_instances(self._ctx.binary_path, self._termination_grace)
            self._backups.restore(record, self._ctx.binary_path)
            restored = await probe_version(self._ctx.binary_path, self._probe_timeout)
        if restored is None:
            raise ApplyFailure(f"Restored binary {record.path.name} does not start")
        log.info("rollback_completed", version=restored, backup=record.path.name)
        return record

    async def build(self) -> str:
        """Run the configured build command and return its output."""
        if not self._build_command:
            raise BuildFailure("No build command configured")
        argv = shlex.split(self._build_command)
        log.info("build_started", command=self._build_command)
        output = await run_cmd(*argv, timeout=self._build_timeout, cwd=self._source_dir)
        if output is None:
            raise BuildFailure(f"Build command failed: {self._build_command}")
        log.info("build_completed")
        return output

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _write_version_file(
        self, session: UpdateSession, entry: ManifestEntry, previous: str
    ) -> None:
        data: dict[str, Any] = {
            "version": entry.version,
            "previous_version": previous,
            "channel": session.channel,
            "checksum": entry.checksum,
            "installed_at": datetime.now(UTC).isoformat(),
        }
        path = self._ctx.version_file
        tmp_path = path.with_suffix(".tmp")
        try:
            tmp_path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            tmp_path.replace(path)
        except OSError as exc:
            log.warning("version_file_write_failed", path=str(path), error=str(exc))

    @staticmethod
    def _discard_download(session: UpdateSession) -> None:
        if session.downloaded_path is not None:
            session.downloaded_path.unlink(missing_ok=True)


def _artifact_name(entry: ManifestEntry) -> str:
    name = Path(urlparse(entry.download_url).path).name
    return name or f"release-{entry.version}"
