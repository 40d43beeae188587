"""Utility helpers for the sign-in forwarder."""

from .geo import GeoCache

__all__ = ["GeoCache"]
