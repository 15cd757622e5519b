"""Golf ball trajectory acquisition and tracking engine."""

__version__ = "0.1.0"
