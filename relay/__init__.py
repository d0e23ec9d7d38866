"""Vault Relay: chat channel webhooks in, confidence-gated answers out."""

from .__version__ import __version__

__all__ = ["__version__"]
