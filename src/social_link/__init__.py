"""Social platform connection and token lifecycle manager."""

__version__ = "0.1.0"
