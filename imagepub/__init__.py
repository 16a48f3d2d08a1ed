"""Multi-registry container image publishing."""

__version__ = "0.1.0"
