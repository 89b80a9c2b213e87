"""Zoho Creator connector: OAuth token lifecycle, record access and bulk exports."""

__version__ = "0.1.0"
