"""Technician dispatch core: matching, broadcast, accept and settlement."""

__version__ = "0.1.0"
