"""Command line entry points.

``shipwright-package`` runs on the release machine, ``shipwright-update``
on each installation. Both exit 0 on success and 1 on any fatal condition.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from shipwright import __version__
from shipwright.client.updater import UpdateClient
from shipwright.config import get_settings
from shipwright.constants import CHANNELS
from shipwright.context import InstallationContext
from shipwright.errors import ShipwrightError
from shipwright.logging import get_logger, setup_logging
from shipwright.release.manifest import ManifestPublisher
from shipwright.release.packager import ReleaseConfig, ReleasePackager

log = get_logger("shipwright.cli")


# ------------------------------------------------------------------
# shipwright-package
# ------------------------------------------------------------------


def _package_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shipwright-package", description="Build, sign and publish release packages"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Package and sign a release")
    create.add_argument("--release-version", help="Semantic version (default: app_version)")
    create.add_argument("--binary", type=Path, help="Binary to package (default: build_output)")
    create.add_argument("--source-dir", type=Path, help="Source checkout for build and git info")
    create.add_argument("--channel", choices=CHANNELS, help="Also publish to this channel")
    create.add_argument("--changelog", action="append", help="Changelog line (repeatable)")
    create.add_argument("--critical", action="store_true", help="Mark the release critical")

    sub.add_parser("clean", help="Remove build, package and temp directories")

    verify = sub.add_parser("verify", help="Verify a stored package")
    verify.add_argument("path", type=Path, help="Package archive or its metadata file")
    return parser


def _run_package(args: argparse.Namespace) -> int:
    settings = get_settings()
    context = InstallationContext.from_settings(settings)
    packager = ReleasePackager(context)

    if args.command == "clean":
        packager.clean()
        print(f"Cleaned {context.workspace_dir}")
        return 0

    if args.command == "verify":
        result = packager.verify(args.path)
        print(f"OK: checksum and signature verified ({args.path.name})")
        log.debug("verify_result", **result.to_dict())
        return 0

    binary = args.binary or (Path(settings.build_output) if settings.build_output else None)
    config = ReleaseConfig(
        version=args.release_version or settings.app_version,
        name=settings.binary_name,
        source_dir=args.source_dir,
        build_command=settings.build_command,
        build_timeout=settings.build_timeout,
        required_tools=list(settings.required_tools),
    )
    package = packager.build_release(binary, config)
    print(f"Created {package.artifact_path}")
    print(f"  sha256: {package.sha256}")
    print(f"  size:   {package.size_bytes} bytes")

    if args.channel:
        publisher = ManifestPublisher(context.manifest_root, publisher_version=__version__)
        manifest = publisher.publish_package(
            args.channel,
            package,
            base_url=settings.download_base_url,
            changelog=args.changelog,
            min_system_version=settings.min_system_version,
            critical=args.critical,
        )
        print(f"Published to {args.channel} (latest: {manifest.latest_version})")
    return 0


def package_main(argv: list[str] | None = None) -> int:
    """Entry point for ``shipwright-package``."""
    args = _package_parser().parse_args(argv)
    setup_logging()
    try:
        return _run_package(args)
    except (ShipwrightError, FileNotFoundError, ValueError) as exc:
        log.error("package_command_failed", command=args.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


# ------------------------------------------------------------------
# shipwright-update
# ------------------------------------------------------------------


def _update_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shipwright-update", description="Check for, apply and roll back updates"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    check = sub.add_parser("check", help="Report whether an update is available")
    check.add_argument("channel", nargs="?", choices=CHANNELS)

    update = sub.add_parser("update", help="Download, verify and apply the latest release")
    update.add_argument("channel", nargs="?", choices=CHANNELS)

    sub.add_parser("rollback", help="Restore the most recent backup")
    sub.add_parser("build", help="Run the configured build command")
    return parser


async def _run_update(client: UpdateClient, args: argparse.Namespace) -> int:
    if args.command == "check":
        installed = await client.installed_version()
        entry = await client.check(args.channel)
        if entry is None:
            print(f"Up to date ({installed})")
            return 0
        flag = " [critical]" if entry.critical else ""
        print(f"Update available: {installed} -> {entry.version}{flag}")
        for line in entry.changelog:
            print(f"  - {line}")
        return 0

    if args.command == "update":
        session = await client.run_update(args.channel)
        outcome = session.outcome
        if outcome is not None and outcome.ok:
            print(f"{outcome.value}: {session.installed_version}")
            return 0
        print(f"{outcome.value if outcome else 'failed'}: {session.error}", file=sys.stderr)
        return 1

    if args.command == "rollback":
        record = await client.rollback()
        print(f"Restored {record.version_tag} from {record.path.name}")
        return 0

    await client.build()
    print("Build completed")
    return 0


def update_main(argv: list[str] | None = None) -> int:
    """Entry point for ``shipwright-update``."""
    args = _update_parser().parse_args(argv)
    setup_logging()
    try:
        client = UpdateClient.from_settings(get_settings())
        return asyncio.run(_run_update(client, args))
    except (ShipwrightError, ValueError) as exc:
        log.error("update_command_failed", command=args.command, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1

