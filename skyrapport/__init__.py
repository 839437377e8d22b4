"""Skyrapport: rate-gated Bluesky graph sync with noise and reciprocity analytics."""

__version__ = "0.1.0"
