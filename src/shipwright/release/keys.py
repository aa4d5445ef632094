"""Signing key material.

One RSA keypair and one self-signed certificate per signing identity,
created lazily on the first package build and reused from then on. The
private key never leaves the packaging workspace.
"""

from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID

from shipwright.constants import RSA_KEY_SIZE, RSA_PUBLIC_EXPONENT
from shipwright.context import InstallationContext
from shipwright.errors import SigningFailure
from shipwright.locking import FileLock
from shipwright.logging import get_logger

log = get_logger("shipwright.release.keys")

KEYGEN_LOCK = ".keygen.lock"


@dataclass(frozen=True)
class KeyMaterial:
    """A loaded signing identity."""

    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey
    certificate: x509.Certificate
    private_key_path: Path
    public_key_path: Path
    certificate_path: Path

    @property
    def fingerprint(self) -> str:
        """SHA-256 fingerprint of the certificate, hex encoded."""
        return self.certificate.fingerprint(hashes.SHA256()).hex()

    def certificate_pem(self) -> bytes:
        return self.certificate.public_bytes(serialization.Encoding.PEM)

    def sign(self, data: bytes) -> bytes:
        """Produce a detached RSA PKCS#1 v1.5 / SHA-256 signature over *data*."""
        return self.private_key.sign(data, padding.PKCS1v15(), hashes.SHA256())


class KeyManager:
    """Owns the signing keypair and certificate for one workspace."""

    def __init__(self, context: InstallationContext, key_size: int = RSA_KEY_SIZE) -> None:
        if key_size < RSA_KEY_SIZE:
            raise ValueError(f"key_size must be at least {RSA_KEY_SIZE} bits")
        self._ctx = context
        self._key_size = key_size

    @property
    def key_dir(self) -> Path:
        return self._ctx.key_dir

    def _paths(self) -> tuple[Path, Path, Path]:
        return (
            self._ctx.private_key_path,
            self._ctx.public_key_path,
            self._ctx.certificate_path,
        )

    def ensure_key_material(self) -> KeyMaterial:
        """Load the key material, generating it first if none exists."""
        if all(p.exists() for p in self._paths()):
            return self._load()

        with FileLock(self.key_dir / KEYGEN_LOCK, blocking=True):
            # Another process may have finished generating while we waited
            present = [p.exists() for p in self._paths()]
            if all(present):
                return self._load()
            if any(present):
                missing = [str(p) for p, ok in zip(self._paths(), present, strict=True) if not ok]
                raise SigningFailure(f"Incomplete key material, missing: {', '.join(missing)}")
            return self._generate()

    def rotate(self) -> KeyMaterial:
        """Retire the current key material and generate a replacement.

        The retired files are kept under ``retired/<fingerprint>/`` so that
        signatures made with them can still be checked against the old
        certificate.
        """
        with FileLock(self.key_dir / KEYGEN_LOCK, blocking=True):
            if all(p.exists() for p in self._paths()):
                current = self._load()
                retired = self.key_dir / "retired" / current.fingerprint[:16]
                retired.mkdir(parents=True, exist_ok=True)
                for path in self._paths():
                    shutil.move(str(path), retired / path.name)
                log.info("key_material_retired", fingerprint=current.fingerprint[:16])
            return self._generate()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _generate(self) -> KeyMaterial:
        private_path, public_path, cert_path = self._paths()
        identity = self._ctx.identity
        log.info("generating_signing_keys", key_size=self._key_size, key_dir=str(self.key_dir))

        try:
            private_key = rsa.generate_private_key(
                public_exponent=RSA_PUBLIC_EXPONENT, key_size=self._key_size
            )
            subject = x509.Name(
                [
                    x509.NameAttribute(NameOID.COUNTRY_NAME, identity.country),
                    x509.NameAttribute(NameOID.STATE_OR_PROVINCE_NAME, identity.state),
                    x509.NameAttribute(NameOID.LOCALITY_NAME, identity.locality),
                    x509.NameAttribute(NameOID.ORGANIZATION_NAME, identity.organization),
                    x509.NameAttribute(NameOID.COMMON_NAME, identity.common_name),
                ]
            )
            now = datetime.now(UTC)
            certificate = (
                x509.CertificateBuilder()
                .subject_name(subject)
                .issuer_name(subject)
                .public_key(private_key.public_key())
                .serial_number(x509.random_serial_number())
                .not_valid_before(now - timedelta(minutes=5))
                .not_valid_after(now + timedelta(days=identity.validity_days))
                .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                .sign(private_key, hashes.SHA256())
            )
        except ValueError as exc:
            raise SigningFailure(f"Key generation failed: {exc}") from exc

        self.key_dir.mkdir(parents=True, exist_ok=True)
        private_pem = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_pem = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        # Certificate last: its presence marks a complete set
        _write_file(private_path, private_pem, mode=0o600)
        _write_file(public_path, public_pem, mode=0o644)
        _write_file(cert_path, certificate.public_bytes(serialization.Encoding.PEM), mode=0o644)

        material = self._load()
        log.info("signing_keys_generated", fingerprint=material.fingerprint[:16])
        return material

    def _load(self) -> KeyMaterial:
        private_path, public_path, cert_path = self._paths()
        try:
            private_key = serialization.load_pem_private_key(
                private_path.read_bytes(), password=None
            )
            public_key = serialization.load_pem_public_key(public_path.read_bytes())
            certificate = x509.load_pem_x509_certificate(cert_path.read_bytes())
        except (OSError, ValueError, TypeError) as exc:
            raise SigningFailure(f"Unable to load key material: {exc}") from exc

        if not isinstance(private_key, rsa.RSAPrivateKey) or not isinstance(
            public_key, rsa.RSAPublicKey
        ):
            raise SigningFailure("Signing keys must be RSA")
        if certificate.public_key().public_numbers() != public_key.public_numbers():
            raise SigningFailure("Certificate does not match the public key")

        log.debug("key_material_loaded", key_dir=str(self.key_dir))
        return KeyMaterial(
            private_key=private_key,
            public_key=public_key,
            certificate=certificate,
            private_key_path=private_path,
            public_key_path=public_path,
            certificate_path=cert_path,
        )


def _write_file(path: Path, data: bytes, *, mode: int) -> None:
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp_path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, mode)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
    os.chmod(tmp_path, mode)
    tmp_path.replace(path)
