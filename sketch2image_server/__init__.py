"""Sketch-to-image translation server."""

__version__ = "0.1.0"
