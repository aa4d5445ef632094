"""Release packager: artifact tree → signed, checksummed package.

Typical flow:
1. ``build_release(source_artifact, config)``: pre-flight, optional build,
   identity, tree, archive, sign, checksum, publish into the package store
2. ``verify(path)``: re-check a stored package
3. ``clean()``: drop the packaging workspace

Nothing reaches the package store until every earlier step has succeeded;
a failed build never leaves a partial or unsigned package behind.
"""

from __future__ import annotations

import json
import shlex
import shutil
import subprocess  # nosec B404
import tarfile
import tempfile
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from shipwright.constants import (
    ARCHIVE_SUFFIX,
    MD5_LISTING,
    RELEASE_SUMMARY,
    SHA256_LISTING,
    SIGNATURE_SUFFIX,
)
from shipwright.context import InstallationContext
from shipwright.errors import BuildFailure, MissingDependency, SigningFailure
from shipwright.logging import get_logger
from shipwright.release.identity import ReleaseIdentity, derive_identity
from shipwright.release.keys import KeyManager
from shipwright.release.layout import assemble_tree
from shipwright.release.verifier import (
    SignatureVerifier,
    VerificationResult,
    load_certificate,
    md5_file,
    sha256_file,
)

log = get_logger("shipwright.release.packager")


@dataclass
class ReleaseConfig:
    """What to package and how to build it."""

    version: str
    name: str | None = None
    source_dir: Path | None = None
    build_command: str | None = None
    build_timeout: int = 1200
    required_tools: list[str] = field(default_factory=list)
    revision: str | None = None
    build_date: str | None = None
    target_platform: str | None = None
    install_prefix: str = "/opt"


@dataclass(frozen=True)
class Package:
    """A signed, checksummed release archive. Immutable once published."""

    artifact_path: Path
    size_bytes: int
    sha256: str
    signature_bytes: bytes
    certificate: bytes
    created_at: str
    signature_path: Path
    metadata_path: Path
    identity: ReleaseIdentity
    name: str

    @property
    def filename(self) -> str:
        return self.artifact_path.name

    def metadata(self) -> dict[str, Any]:
        return {
            "name": self.name,
            **self.identity.to_dict(),
            "package_file": self.artifact_path.name,
            "signature_file": self.signature_path.name,
            "checksum": self.sha256,
            "size": self.size_bytes,
            "created_at": self.created_at,
        }

    @classmethod
    def from_metadata(cls, metadata_path: Path) -> Package:
        """Load a stored package from its ``<name>-<full_version>.json`` file."""
        data = json.loads(metadata_path.read_text(encoding="utf-8"))
        store = metadata_path.parent
        artifact = store / data["package_file"]
        signature_path = store / data.get("signature_file", artifact.name + SIGNATURE_SUFFIX)
        return cls(
            artifact_path=artifact,
            size_bytes=int(data["size"]),
            sha256=data["checksum"],
            signature_bytes=signature_path.read_bytes() if signature_path.exists() else b"",
            certificate=b"",
            created_at=data.get("created_at", ""),
            signature_path=signature_path,
            metadata_path=metadata_path,
            identity=ReleaseIdentity.from_dict(data),
            name=data.get("name", ""),
        )


class ReleasePackager:
    """Builds signed release packages into the workspace package store."""

    def __init__(self, context: InstallationContext, key_manager: KeyManager | None = None) -> None:
        self._ctx = context
        self._keys = key_manager or KeyManager(context)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def build_release(self, source_artifact: Path | None, config: ReleaseConfig) -> Package:
        """Produce a signed package for *source_artifact* (or the build output)."""
        name = config.name or self._ctx.binary_name
        self.check_dependencies(config)

        source_artifact = self._build_binary(source_artifact, config)
        identity = derive_identity(
            config.version,
            source_dir=config.source_dir,
            revision=config.revision,
            build_date=config.build_date,
            target_platform=config.target_platform,
        )
        package_name = f"{name}-{identity.full_version}"
        self._check_not_published(package_name)

        for directory in (self._ctx.build_dir, self._ctx.package_dir, self._ctx.temp_dir):
            directory.mkdir(parents=True, exist_ok=True)

        # Everything is produced in scratch first and moved into the store last
        with tempfile.TemporaryDirectory(dir=self._ctx.temp_dir) as scratch:
            scratch_dir = Path(scratch)
            tree = assemble_tree(
                self._ctx.build_dir / package_name,
                source_artifact,
                name,
                identity,
                install_dir=config.install_prefix,
            )
            log.info("package_tree_created", tree=str(tree))

            archive = scratch_dir / f"{package_name}{ARCHIVE_SUFFIX}"
            _create_archive(tree, archive)

            try:
                material = self._keys.ensure_key_material()
                signature = material.sign(archive.read_bytes())
            except SigningFailure:
                log.error("package_signing_failed", package=package_name)
                raise
            except (OSError, ValueError, TypeError) as exc:
                log.error("package_signing_failed", package=package_name, error=str(exc))
                raise SigningFailure(f"Unable to sign {archive.name}: {exc}") from exc
            signature_scratch = archive.with_name(archive.name + SIGNATURE_SUFFIX)
            signature_scratch.write_bytes(signature)

            # Checksum covers the final archive only; the signature travels beside it
            checksum = sha256_file(archive)
            size = archive.stat().st_size
            created_at = datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")

            artifact_path = self._ctx.package_dir / archive.name
            signature_path = self._ctx.package_dir / signature_scratch.name
            metadata_path = self._ctx.package_dir / f"{package_name}.json"
            shutil.move(str(signature_scratch), signature_path)
            shutil.move(str(archive), artifact_path)

        package = Package(
            artifact_path=artifact_path,
            size_bytes=size,
            sha256=checksum,
            signature_bytes=signature,
            certificate=material.certificate_pem(),
            created_at=created_at,
            signature_path=signature_path,
            metadata_path=metadata_path,
            identity=identity,
            name=name,
        )
        _write_json(metadata_path, package.metadata())
        self.write_checksums()
        self.write_release_summary(package)
        log.info(
            "package_created",
            package=str(artifact_path),
            sha256=checksum,
            size=size,
            fingerprint=material.fingerprint[:16],
        )
        return package

    def check_dependencies(self, config: ReleaseConfig) -> None:
        """Fail before any side effect if a required tool is absent."""
        tools = list(config.required_tools)
        if config.build_command:
            argv = shlex.split(config.build_command)
            if not argv:
                raise BuildFailure("Build command is empty")
            tools.append(argv[0])
        for tool in tools:
            if shutil.which(tool) is None:
                log.error("missing_dependency", tool=tool)
                raise MissingDependency(tool)

    def _check_not_published(self, package_name: str) -> None:
        # Published packages are immutable; a rebuild needs a new full version
        store = self._ctx.package_dir
        for candidate in (
            store / f"{package_name}{ARCHIVE_SUFFIX}",
            store / f"{package_name}{ARCHIVE_SUFFIX}{SIGNATURE_SUFFIX}",
            store / f"{package_name}.json",
        ):
            if candidate.exists():
                log.error("package_already_exists", package=candidate.name)
                raise BuildFailure(f"Package already exists: {candidate.name}")

    def _build_binary(self, source_artifact: Path | None, config: ReleaseConfig) -> Path:
        if config.build_command:
            log.info("build_started", command=config.build_command)
            try:
                proc = subprocess.run(  # nosec B603
                    shlex.split(config.build_command),
                    cwd=config.source_dir,
                    capture_output=True,
                    text=True,
                    timeout=config.build_timeout,
                    check=False,
                )
            except subprocess.TimeoutExpired as exc:
                raise BuildFailure(f"Build timed out after {config.build_timeout}s") from exc
            except OSError as exc:
                raise BuildFailure(f"Build could not start: {exc}") from exc
            if proc.returncode != 0:
                log.error("build_failed", returncode=proc.returncode, stderr=proc.stderr[-500:])
                raise BuildFailure(f"Build exited with status {proc.returncode}")
            log.info("build_completed")

        if source_artifact is None:
            raise BuildFailure("No binary to package")
        if not source_artifact.is_file():
            raise BuildFailure(f"Binary not found: {source_artifact}")
        return source_artifact

    # ------------------------------------------------------------------
    # Store maintenance
    # ------------------------------------------------------------------

    def write_checksums(self) -> None:
        """Regenerate the sha256/md5 digest listings for the package store."""
        store = self._ctx.package_dir
        listings = {SHA256_LISTING: sha256_file, MD5_LISTING: md5_file}
        artifacts = sorted(
            p for p in store.iterdir() if p.is_file() and p.name not in (*listings, RELEASE_SUMMARY)
        )
        for listing, digest in listings.items():
            lines = [f"{digest(p)}  {p.name}\n" for p in artifacts]
            (store / listing).write_text("".join(lines), encoding="utf-8")
        log.debug("checksums_written", files=len(artifacts))

    def write_release_summary(self, package: Package) -> Path:
        identity = package.identity
        listing = (self._ctx.package_dir / SHA256_LISTING).read_text(encoding="utf-8")
        summary = (
            f"# {package.name} release summary\n\n"
            "## Build information\n"
            f"- **Version**: {identity.semantic_version}\n"
            f"- **Git commit**: {identity.source_revision}\n"
            f"- **Build date**: {identity.build_date}\n"
            f"- **Target platform**: {identity.target_platform}\n"
            f"- **Full version**: {identity.full_version}\n\n"
            "## Package\n"
            f"- `{package.filename}` ({package.size_bytes} bytes)\n"
            f"- `{package.signature_path.name}` (detached signature)\n\n"
            "## Checksums\n\n"
            f"```\n{listing}```\n\n"
            "## Verification\n\n"
            "```\nsha256sum -c checksums.sha256\n```\n"
        )
        path = self._ctx.package_dir / RELEASE_SUMMARY
        path.write_text(summary, encoding="utf-8")
        return path

    def clean(self) -> None:
        """Remove the build, package and temp directories. Keys are kept."""
        for directory in (self._ctx.build_dir, self._ctx.package_dir, self._ctx.temp_dir):
            if directory.exists():
                shutil.rmtree(directory)
        log.info("workspace_cleaned", workspace=str(self._ctx.workspace_dir))

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    def verify(self, path: Path) -> VerificationResult:
        """Check a stored package against its metadata and signature.

        *path* may be the archive or its ``.json`` metadata file.
        """
        metadata_path = path
        if path.name.endswith(ARCHIVE_SUFFIX):
            metadata_path = path.with_name(path.name[: -len(ARCHIVE_SUFFIX)] + ".json")
        if not metadata_path.exists():
            raise FileNotFoundError(f"No package metadata for {path}")

        package = Package.from_metadata(metadata_path)
        certificate = load_certificate(self._ctx.certificate_for_verification())
        result = SignatureVerifier(require_signature=True).verify(
            package.artifact_path,
            package.sha256,
            package.signature_bytes or None,
            certificate,
        )
        log.info("package_verified", package=str(package.artifact_path))
        return result


def _create_archive(tree: Path, archive: Path) -> None:
    # Members are stored relative to the tree root: bin/, config/, ...
    with tarfile.open(archive, "w:gz") as tar:
        for child in sorted(tree.iterdir()):
            tar.add(child, arcname=child.name)


def _write_json(path: Path, data: dict[str, Any]) -> None:
    tmp_path = path.with_suffix(".tmp")
    tmp_path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
    tmp_path.replace(path)
