"""Shipwright: signed release packaging and self-update for remote fleets."""

__version__ = "0.3.0"
