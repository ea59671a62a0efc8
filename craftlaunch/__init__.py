"""Minecraft runtime resolver, artifact downloader and launcher core."""

__version__ = "0.3.0"
