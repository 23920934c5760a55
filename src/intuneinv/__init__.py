"""Intune configuration inventory: sync apps, scripts and remediations to a local store."""

__version__ = "0.3.0"
