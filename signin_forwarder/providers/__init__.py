"""Identity provider integrations for the sign-in forwarder."""

from . import microsoft

__all__ = ["microsoft"]
