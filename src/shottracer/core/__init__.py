"""Configuration and coordinate conversions."""
