"""Artifact tree assembly.

A release tree always has the same shape::

    bin/<executable>
    config/default.toml
    scripts/install
    scripts/uninstall
    docs/README.md

Everything except the binary is rendered from the templates below with the
release identity substituted in.
"""

from __future__ import annotations

import shutil
from pathlib import Path
from string import Template

from shipwright.release.identity import ReleaseIdentity

DEFAULT_CONFIG = Template(
    """\
# $name default configuration ($full_version)
[device]
name = "$name device"
site_id = "default-site"

[security]
encryption_enabled = true
certificate_validation = true

[storage]
max_size_gb = 10
retention_days = 30
"""
)

INSTALL_SCRIPT = Template(
    """\
#!/bin/sh
# Install $name $full_version
set -e

INSTALL_DIR="$${INSTALL_DIR:-$install_dir}"
CONFIG_DIR="$${CONFIG_DIR:-/etc/$name}"

mkdir -p "$$INSTALL_DIR" "$$CONFIG_DIR"
cp bin/$name "$$INSTALL_DIR/$name"
chmod 755 "$$INSTALL_DIR/$name"
if [ ! -f "$$CONFIG_DIR/config.toml" ]; then
    cp config/default.toml "$$CONFIG_DIR/config.toml"
    chmod 644 "$$CONFIG_DIR/config.toml"
fi

echo "$name $semantic_version installed to $$INSTALL_DIR"
"""
)

UNINSTALL_SCRIPT = Template(
    """\
#!/bin/sh
# Uninstall $name $full_version
set -e

INSTALL_DIR="$${INSTALL_DIR:-$install_dir}"

rm -f "$$INSTALL_DIR/$name"
rmdir "$$INSTALL_DIR" 2>/dev/null || true

# Configuration in /etc/$name is left in place
echo "$name uninstalled"
"""
)

README = Template(
    """\
# $name $full_version

## Installation

1. Extract the package: `tar -xzf $name-$full_version.tar.gz`
2. Run `sudo ./scripts/install`

## Configuration

Edit `/etc/$name/config.toml`.

## Uninstallation

Run `sudo ./scripts/uninstall`.

## Version information

- Version: $semantic_version
- Git commit: $source_revision
- Build date: $build_date
- Target platform: $target_platform
"""
)

TREE_FILES = (
    "bin/{name}",
    "config/default.toml",
    "scripts/install",
    "scripts/uninstall",
    "docs/README.md",
)


def expected_members(name: str) -> list[str]:
    return [entry.format(name=name) for entry in TREE_FILES]


def assemble_tree(
    root: Path,
    binary: Path,
    name: str,
    identity: ReleaseIdentity,
    install_dir: str = "/opt",
) -> Path:
    """Populate *root* with the release tree and return it."""
    if root.exists():
        shutil.rmtree(root)
    for sub in ("bin", "config", "scripts", "docs"):
        (root / sub).mkdir(parents=True)

    values = {
        "name": name,
        "full_version": identity.full_version,
        "semantic_version": identity.semantic_version,
        "source_revision": identity.source_revision,
        "build_date": identity.build_date,
        "target_platform": identity.target_platform,
        "install_dir": f"{install_dir.rstrip('/')}/{name}",
    }

    target = root / "bin" / name
    shutil.copyfile(binary, target)
    target.chmod(0o755)

    (root / "config" / "default.toml").write_text(
        DEFAULT_CONFIG.substitute(values), encoding="utf-8"
    )
    for script, template in (("install", INSTALL_SCRIPT), ("uninstall", UNINSTALL_SCRIPT)):
        path = root / "scripts" / script
        path.write_text(template.substitute(values), encoding="utf-8")
        path.chmod(0o755)
    (root / "docs" / "README.md").write_text(README.substitute(values), encoding="utf-8")
    return root
