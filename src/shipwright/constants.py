"""Centralized constants for Shipwright."""

# Channels
CHANNELS = ("stable", "beta", "alpha", "development")
DEFAULT_CHANNEL = "stable"

# Manifest / package store
MANIFEST_FILENAME = "manifest.json"
SIGNATURE_SUFFIX = ".sig"
ARCHIVE_SUFFIX = ".tar.gz"
SHA256_LISTING = "checksums.sha256"
MD5_LISTING = "checksums.md5"
RELEASE_SUMMARY = "RELEASE_SUMMARY.md"

# Key material file names
PRIVATE_KEY_FILENAME = "signing-private.pem"
PUBLIC_KEY_FILENAME = "signing-public.pem"
CERTIFICATE_FILENAME = "signing-cert.pem"
RSA_KEY_SIZE = 4096
RSA_PUBLIC_EXPONENT = 65537

# Installation
LOCK_FILENAME = ".shipwright.lock"
VERSION_FILENAME = "version.json"
NOT_INSTALLED = "not_installed"
UNKNOWN_REVISION = "unknown"

# Streaming I/O
CHUNK_SIZE = 65536
