"""Update client for installed fleets.

Polls a channel manifest, downloads and verifies the release, backs up the
installed binary and swaps in the new one, rolling back when the new
binary does not report the expected version.
"""
