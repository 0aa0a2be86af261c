"""Monitoring server core: configuration, document storage, cluster variables and an HTTP configuration service."""

__version__ = "0.1.0"