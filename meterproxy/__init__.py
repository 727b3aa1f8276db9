"""Metering reverse proxy for the Anthropic API with monthly budget enforcement."""

__version__ = "0.1.0"
