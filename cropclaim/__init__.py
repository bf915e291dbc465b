"""Crop-insurance claim lifecycle and settlement engine."""

__version__ = "0.1.0"
