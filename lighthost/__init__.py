"""Provisioning engine for hosted game servers."""

__version__ = "0.1.0"
