"""Error taxonomy for packaging and updating.

Every fatal condition in the pipeline maps to exactly one of these classes.
Packaging code raises them; the update client turns session-level failures
into a ``SessionOutcome`` on the returned session.
"""

from __future__ import annotations


class ShipwrightError(Exception):
    """Base class for all pipeline errors."""


class MissingDependency(ShipwrightError):
    """A required external tool is not available on PATH."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"Missing dependency: {tool}")
        self.tool = tool


class BuildFailure(ShipwrightError):
    """The opaque build step did not produce a usable binary."""


class SigningFailure(ShipwrightError):
    """Key material could not be produced or the archive could not be signed."""


class NetworkFailure(ShipwrightError):
    """A manifest or artifact could not be fetched."""


class ChecksumMismatch(ShipwrightError):
    """Downloaded bytes do not hash to the published checksum."""

    def __init__(self, expected: str, actual: str) -> None:
        super().__init__(f"Checksum mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class SignatureMissing(ShipwrightError):
    """No detached signature accompanies the artifact."""


class SignatureInvalid(ShipwrightError):
    """The detached signature does not verify against the certificate."""


class ApplyFailure(ShipwrightError):
    """The new binary could not be installed or did not report the expected version."""


class NoBackupAvailable(ShipwrightError):
    """The backup store holds no record to restore from."""


class LockContention(ShipwrightError):
    """Another session already holds the installation lock."""
