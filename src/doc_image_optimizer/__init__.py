"""Batch image optimization for generated documents."""

__version__ = "0.1.0"
