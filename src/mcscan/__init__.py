"""Minecraft server range scanner backed by Elasticsearch."""

__version__ = "0.3.0"
