"""Update session state: one run of check → apply, never persisted."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from shipwright.client.backup import BackupRecord
    from shipwright.release.manifest import ManifestEntry


class SessionState(Enum):
    """Where a session is in the update state machine."""

    IDLE = "idle"
    CHECKING = "checking"
    UPDATE_AVAILABLE = "update_available"
    DOWNLOADING = "downloading"
    VERIFYING = "verifying"
    BACKING_UP = "backing_up"
    APPLYING = "applying"
    VERIFIED = "verified"
    ROLLED_BACK = "rolled_back"


class SessionOutcome(Enum):
    """How a session ended."""

    UPDATED = "updated"
    UP_TO_DATE = "up_to_date"
    ROLLED_BACK = "rolled_back"
    NETWORK_FAILURE = "network_failure"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    SIGNATURE_MISSING = "signature_missing"
    SIGNATURE_INVALID = "signature_invalid"
    LOCK_CONTENTION = "lock_contention"
    APPLY_FAILED = "apply_failed"
    TIMED_OUT = "timed_out"

    @property
    def ok(self) -> bool:
        return self in (SessionOutcome.UPDATED, SessionOutcome.UP_TO_DATE)


@dataclass
class UpdateSession:
    """Transient record of one update attempt."""

    channel: str
    installed_version: str
    state: SessionState = SessionState.IDLE
    candidate: ManifestEntry | None = None
    downloaded_path: Path | None = None
    verified: bool = False
    backup: BackupRecord | None = None
    backup_available: bool = False
    outcome: SessionOutcome | None = None
    error: str | None = None
    history: list[SessionState] = field(default_factory=list)
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    completed_at: str | None = None

    def advance(self, state: SessionState) -> None:
        self.state = state
        self.history.append(state)

    def finish(self, outcome: SessionOutcome, error: str | None = None) -> None:
        self.outcome = outcome
        if error is not None:
            self.error = error
        self.completed_at = datetime.now(UTC).isoformat()

    @property
    def target_version(self) -> str | None:
        return self.candidate.version if self.candidate else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "installed_version": self.installed_version,
            "target_version": self.target_version,
            "state": self.state.value,
            "outcome": self.outcome.value if self.outcome else None,
            "verified": self.verified,
            "backup": self.backup.to_dict() if self.backup else None,
            "backup_available": self.backup_available,
            "error": self.error,
            "history": [s.value for s in self.history],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
