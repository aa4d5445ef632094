"""Unit tests for shipwright.release.manifest."""

import json

import pytest

from shipwright.release.manifest import (
    Manifest,
    ManifestEntry,
    ManifestPublisher,
    entry_for_package,
    validate_channel,
)


def _entry(version: str, **overrides) -> ManifestEntry:
    values = {
        "version": version,
        "release_date": "2026-10-16T00:00:00Z",
        "download_url": f"https://updates.example.com/stable/fleet-agent-{version}.tar.gz",
        "checksum": "a" * 64,
        "size_bytes": 1024,
    }
    values.update(overrides)
    return ManifestEntry(**values)


class TestManifestEntry:
    """Tests for the entry data model."""

    def test_rejects_non_semver(self):
        with pytest.raises(ValueError):
            _entry("1.1.0-abc1234-2026-10-16-x")

    def test_dict_uses_wire_names(self):
        data = _entry("1.1.0", changelog=("Fix crash",)).to_dict()
        assert data["size"] == 1024
        assert data["changelog"] == ["Fix crash"]
        assert data["rollback_allowed"] is True

    def test_from_dict_treats_none_signature_as_missing(self):
        data = _entry("1.1.0").to_dict()
        data["signature"] = "none"
        assert ManifestEntry.from_dict(data).signature is None


class TestManifest:
    """Tests for the manifest document."""

    def test_from_dict_accepts_update_channel_key(self):
        manifest = Manifest.from_dict({"update_channel": "Beta", "releases": []})
        assert manifest.channel == "beta"

    @pytest.mark.parametrize("releases", [[["x"]], ["1.1.0"], {"version": "1.1.0"}, "1.1.0"])
    def test_from_dict_rejects_malformed_releases(self, releases):
        with pytest.raises(ValueError):
            Manifest.from_dict({"channel": "stable", "releases": releases})

    def test_latest_entry(self):
        manifest = Manifest(channel="stable", latest_version="1.1.0", releases=[_entry("1.1.0")])
        assert manifest.latest_entry == _entry("1.1.0")
        assert Manifest(channel="stable").latest_entry is None

    def test_validate_channel(self):
        assert validate_channel(" Stable ") == "stable"
        with pytest.raises(ValueError):
            validate_channel("nightly")


class TestManifestPublisher:
    """Tests for publish() and publish_package()."""

    def test_latest_is_semantic_maximum(self, tmp_path):
        publisher = ManifestPublisher(tmp_path, publisher_version="0.3.0")
        for version in ("1.9.0", "1.10.0", "1.2.0"):
            manifest = publisher.publish("stable", _entry(version))

        assert manifest.latest_version == "1.10.0"
        assert [e.version for e in manifest.releases] == ["1.10.0", "1.9.0", "1.2.0"]
        assert manifest.current_version == "0.3.0"
        assert manifest.last_check is not None

    def test_republish_replaces_entry(self, tmp_path):
        publisher = ManifestPublisher(tmp_path)
        publisher.publish("stable", _entry("1.1.0", checksum="a" * 64))
        manifest = publisher.publish("stable", _entry("v1.1.0", checksum="b" * 64))

        assert len(manifest.releases) == 1
        assert manifest.releases[0].checksum == "b" * 64

    def test_channels_are_independent(self, tmp_path):
        publisher = ManifestPublisher(tmp_path)
        publisher.publish("beta", _entry("2.0.0-beta.1"))
        publisher.publish("stable", _entry("1.1.0"))

        assert publisher.load("beta").latest_version == "2.0.0-beta.1"
        assert publisher.load("stable").latest_version == "1.1.0"
        assert publisher.load("alpha").releases == []

    def test_written_atomically_as_json(self, tmp_path):
        publisher = ManifestPublisher(tmp_path)
        publisher.publish("stable", _entry("1.1.0"))
        path = tmp_path / "stable" / "manifest.json"

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["latest_version"] == "1.1.0"
        assert data["channel"] == "stable"
        assert not path.with_suffix(".tmp").exists()

    def test_publish_package(self, tmp_path, package_factory):
        package = package_factory("1.1.0")
        publisher = ManifestPublisher(tmp_path / "channels")
        manifest = publisher.publish_package(
            "stable", package, base_url="https://updates.example.com/", changelog=["New"]
        )

        entry = manifest.latest_entry
        assert entry is not None
        assert entry.checksum == package.sha256
        assert entry.size_bytes == package.size_bytes
        assert entry.download_url == f"https://updates.example.com/stable/{package.filename}"
        assert entry.signature == entry.download_url + ".sig"
        assert entry.changelog == ("New",)
        assert (tmp_path / "channels" / "stable" / package.filename).is_file()
        assert (tmp_path / "channels" / "stable" / package.signature_path.name).is_file()

    def test_entry_for_package_default_changelog(self, package_factory):
        package = package_factory("1.1.0")
        entry = entry_for_package(package, download_url="file:///x.tar.gz")
        assert entry.changelog[0] == "Release 1.1.0"
        assert entry.signature is None
