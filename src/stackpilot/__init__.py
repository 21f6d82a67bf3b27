"""Provision a host, hand it to configuration management, then keep it healthy."""

__version__ = "0.1.0"
