"""Installation context shared by every pipeline component.

Paths and the signing identity are passed around as one value instead of
living in module globals, so tests can build isolated installations under
``tmp_path``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from shipwright.constants import (
    CERTIFICATE_FILENAME,
    LOCK_FILENAME,
    PRIVATE_KEY_FILENAME,
    PUBLIC_KEY_FILENAME,
    VERSION_FILENAME,
)

if TYPE_CHECKING:
    from shipwright.config import Settings


@dataclass(frozen=True)
class SigningIdentity:
    """Subject fields bound into the self-signed certificate."""

    organization: str = "Shipwright"
    common_name: str = "Shipwright Update Package"
    country: str = "US"
    state: str = "State"
    locality: str = "City"
    validity_days: int = 365


@dataclass(frozen=True)
class InstallationContext:
    """Filesystem layout for one packaging workspace and one installation."""

    binary_name: str
    install_dir: Path
    state_dir: Path
    workspace_dir: Path
    manifest_root: Path
    trusted_certificate: Path | None = None
    identity: SigningIdentity = field(default_factory=SigningIdentity)

    # -- client side ---------------------------------------------------

    @property
    def binary_path(self) -> Path:
        return self.install_dir / self.binary_name

    @property
    def lock_path(self) -> Path:
        return self.install_dir / LOCK_FILENAME

    @property
    def version_file(self) -> Path:
        return self.install_dir / VERSION_FILENAME

    @property
    def backup_dir(self) -> Path:
        return self.state_dir / "backups"

    @property
    def download_dir(self) -> Path:
        return self.state_dir / "downloads"

    # -- packaging side ------------------------------------------------

    @property
    def build_dir(self) -> Path:
        return self.workspace_dir / "build"

    @property
    def package_dir(self) -> Path:
        return self.workspace_dir / "packages"

    @property
    def key_dir(self) -> Path:
        return self.workspace_dir / "keys"

    @property
    def temp_dir(self) -> Path:
        return self.workspace_dir / "temp"

    @property
    def private_key_path(self) -> Path:
        return self.key_dir / PRIVATE_KEY_FILENAME

    @property
    def public_key_path(self) -> Path:
        return self.key_dir / PUBLIC_KEY_FILENAME

    @property
    def certificate_path(self) -> Path:
        return self.key_dir / CERTIFICATE_FILENAME

    def certificate_for_verification(self) -> Path:
        """Return the pinned certificate, falling back to the local signing cert."""
        return self.trusted_certificate or self.certificate_path

    @classmethod
    def from_settings(cls, settings: Settings) -> InstallationContext:
        return cls(
            binary_name=settings.binary_name,
            install_dir=Path(settings.install_dir).expanduser(),
            state_dir=Path(settings.state_dir).expanduser(),
            workspace_dir=Path(settings.workspace_dir).expanduser(),
            manifest_root=Path(settings.manifest_root).expanduser(),
            trusted_certificate=(
                Path(settings.trusted_certificate).expanduser()
                if settings.trusted_certificate
                else None
            ),
            identity=SigningIdentity(
                organization=settings.cert_organization,
                common_name=settings.cert_common_name,
                country=settings.cert_country,
                state=settings.cert_state,
                locality=settings.cert_locality,
                validity_days=settings.cert_validity_days,
            ),
        )
