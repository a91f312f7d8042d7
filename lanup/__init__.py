"""lanup - expose local development services on your LAN."""

__version__ = "1.0.0"
