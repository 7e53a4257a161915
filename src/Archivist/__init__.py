"""Archivist: offline content-pack tooling for the kiosk."""

__version__ = "1.4.0"
