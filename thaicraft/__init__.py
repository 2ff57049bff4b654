"""Thai Craft wallet authentication and session core."""

__version__ = "0.1.0"
