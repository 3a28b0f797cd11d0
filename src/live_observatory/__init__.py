"""Live Observatory: live-metadata resolution engine for YouTube targets."""

__version__ = "0.1.0"
