"""Backups of the installed binary, taken before every overwrite."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from shipwright.errors import NoBackupAvailable
from shipwright.logging import get_logger

log = get_logger("shipwright.client.backup")

_TIMESTAMP_FMT = "%Y%m%dT%H%M%S%f"
# <timestamp>_<version>[~<n>]
_RECORD_RE = re.compile(r"^(?P<ts>\d{8}T\d{12})_(?P<version>[A-Za-z0-9.+-]+)(?:~(?P<seq>\d+))?$")


@dataclass(frozen=True)
class BackupRecord:
    """An immutable snapshot of a previously installed binary."""

    captured_at: datetime
    version_tag: str
    path: Path

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()

    def to_dict(self) -> dict[str, Any]:
        return {
            "captured_at": self.captured_at.isoformat(),
            "version_tag": self.version_tag,
            "path": str(self.path),
        }

    @classmethod
    def from_path(cls, path: Path) -> BackupRecord | None:
        m = _RECORD_RE.match(path.name)
        if m is None:
            return None
        captured = datetime.strptime(m.group("ts"), _TIMESTAMP_FMT).replace(tzinfo=UTC)
        return cls(captured_at=captured, version_tag=m.group("version"), path=path)

    def _sort_key(self) -> tuple[datetime, int]:
        m = _RECORD_RE.match(self.path.name)
        seq = int(m.group("seq")) if m and m.group("seq") else 0
        return (self.captured_at, seq)


class BackupManager:
    """Creates, lists, prunes and restores binary backups.

    Records are never overwritten: each ``backup()`` call creates a new file
    named ``<timestamp>_<version>``. ``retention`` bounds how many records
    are kept; ``None`` keeps them all.
    """

    def __init__(self, backup_dir: Path, retention: int | None = None) -> None:
        if retention is not None and retention < 1:
            raise ValueError("retention must be at least 1")
        self._dir = Path(backup_dir)
        self._retention = retention

    @property
    def backup_dir(self) -> Path:
        return self._dir

    def backup(self, current_binary: Path, version_tag: str) -> BackupRecord:
        """Copy *current_binary* into a new record."""
        self._dir.mkdir(parents=True, exist_ok=True)
        captured = datetime.now(UTC)
        existing = self.records()
        # Capture times are strictly increasing so "latest" is unambiguous
        if existing and existing[-1].captured_at >= captured:
            captured = existing[-1].captured_at + timedelta(microseconds=1)
        tag = re.sub(r"[^A-Za-z0-9.+-]", "-", version_tag) or "unknown"
        base = f"{captured.strftime(_TIMESTAMP_FMT)}_{tag}"

        data = current_binary.read_bytes()
        target = self._dir / base
        seq = 0
        while True:
            try:
                fd = os.open(target, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o755)
                break
            except FileExistsError:
                seq += 1
                target = self._dir / f"{base}~{seq}"
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())

        record = BackupRecord(captured_at=captured, version_tag=tag, path=target)
        log.info("backup_created", path=str(target), version=tag, size=len(data))
        self.prune(keep=record)
        return record

    def records(self) -> list[BackupRecord]:
        """All records, oldest first."""
        if not self._dir.exists():
            return []
        found = []
        for path in self._dir.iterdir():
            if not path.is_file():
                continue
            record = BackupRecord.from_path(path)
            if record is not None:
                found.append(record)
        return sorted(found, key=BackupRecord._sort_key)

    def latest(self) -> BackupRecord:
        """Most recently captured record across all versions."""
        records = self.records()
        if not records:
            raise NoBackupAvailable(f"No backups in {self._dir}")
        return records[-1]

    def rollback(self) -> bytes:
        """Bytes of the most recent record, for restoration."""
        record = self.latest()
        log.info("rollback_selected", path=str(record.path), version=record.version_tag)
        return record.read_bytes()

    def restore(self, record: BackupRecord, target: Path) -> None:
        """Atomically replace *target* with the bytes captured by *record*."""
        restore_bytes(record.read_bytes(), target)
        log.info("backup_restored", path=str(record.path), target=str(target))

    def prune(self, keep: BackupRecord | None = None) -> list[BackupRecord]:
        """Drop the oldest records beyond the retention count."""
        if self._retention is None:
            return []
        records = self.records()
        excess = len(records) - self._retention
        removed = []
        for record in records:
            if excess <= 0:
                break
            if keep is not None and record.path == keep.path:
                continue
            record.path.unlink(missing_ok=True)
            removed.append(record)
            excess -= 1
        if removed:
            log.info("backups_pruned", removed=len(removed), retention=self._retention)
        return removed


def restore_bytes(data: bytes, target: Path) -> None:
    """Write *data* to *target* via a temp file and an atomic rename."""
    tmp_path = target.with_name(f".{target.name}.restore")
    tmp_path.write_bytes(data)
    tmp_path.chmod(0o755)
    os.replace(tmp_path, target)

