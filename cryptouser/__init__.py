"""cryptouser: identity registry with public and access-key protected data."""

__version__ = "0.1.0"
