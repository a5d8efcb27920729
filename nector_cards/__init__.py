"""Nector Hospital loyalty card service."""

__version__ = "0.1.0"
