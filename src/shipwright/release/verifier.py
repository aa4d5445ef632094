"""Checksum and signature verification for downloaded packages."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from shipwright.constants import CHUNK_SIZE
from shipwright.errors import ChecksumMismatch, SignatureInvalid, SignatureMissing
from shipwright.logging import get_logger

log = get_logger("shipwright.release.verifier")


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as source:
        for chunk in iter(lambda: source.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def md5_file(path: Path) -> str:
    digest = hashlib.md5(usedforsecurity=False)
    with path.open("rb") as source:
        for chunk in iter(lambda: source.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def load_certificate(certificate: x509.Certificate | bytes | Path) -> x509.Certificate:
    if isinstance(certificate, x509.Certificate):
        return certificate
    data = certificate.read_bytes() if isinstance(certificate, Path) else certificate
    return x509.load_pem_x509_certificate(data)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one package."""

    checksum_ok: bool
    signature_ok: bool
    signature_present: bool

    @property
    def trusted(self) -> bool:
        return self.checksum_ok and self.signature_ok

    def to_dict(self) -> dict[str, Any]:
        return {
            "checksum_ok": self.checksum_ok,
            "signature_ok": self.signature_ok,
            "signature_present": self.signature_present,
        }


class SignatureVerifier:
    """Validates a package's checksum and detached signature.

    The checksum is always mandatory. With ``require_signature`` (the
    default) a missing or invalid signature is as fatal as a checksum
    mismatch; without it, signature problems are logged and reported in the
    result but do not raise.
    """

    def __init__(self, require_signature: bool = True) -> None:
        self._require_signature = require_signature

    @property
    def require_signature(self) -> bool:
        return self._require_signature

    def verify(
        self,
        package_path: Path,
        checksum: str,
        signature: bytes | None,
        certificate: x509.Certificate | bytes | Path | None,
    ) -> VerificationResult:
        actual = sha256_file(package_path)
        if not hmac.compare_digest(actual.lower(), checksum.strip().lower()):
            log.error("checksum_mismatch", path=str(package_path), expected=checksum, actual=actual)
            raise ChecksumMismatch(checksum, actual)
        log.info("checksum_verified", path=str(package_path))

        if not signature:
            return self._signature_problem(
                SignatureMissing(f"No signature for {package_path.name}"), present=False
            )
        if certificate is None:
            return self._signature_problem(
                SignatureInvalid("No certificate available to verify the signature"),
                present=True,
            )

        try:
            cert = load_certificate(certificate)
            public_key = cert.public_key()
            if not isinstance(public_key, rsa.RSAPublicKey):
                raise SignatureInvalid("Certificate does not carry an RSA public key")
            public_key.verify(
                signature, package_path.read_bytes(), padding.PKCS1v15(), hashes.SHA256()
            )
        except InvalidSignature:
            return self._signature_problem(
                SignatureInvalid(f"Signature does not match {package_path.name}"), present=True
            )
        except (OSError, ValueError) as exc:
            return self._signature_problem(
                SignatureInvalid(f"Unable to check signature: {exc}"), present=True
            )
        except SignatureInvalid as exc:
            return self._signature_problem(exc, present=True)

        log.info("signature_verified", path=str(package_path))
        return VerificationResult(checksum_ok=True, signature_ok=True, signature_present=True)

    def _signature_problem(
        self, error: SignatureMissing | SignatureInvalid, *, present: bool
    ) -> VerificationResult:
        if self._require_signature:
            log.error("signature_rejected", error=str(error))
            raise error
        log.warning("signature_unverified", error=str(error))
        return VerificationResult(checksum_ok=True, signature_ok=False, signature_present=present)
