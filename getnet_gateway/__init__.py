"""Getnet checkout gateway with reliable merchant callbacks."""

__version__ = "1.0.0"
