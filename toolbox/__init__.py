"""File Toolbox - ephemeral artifact pipeline for video, image and PDF tools."""

__version__ = "1.0.0"
