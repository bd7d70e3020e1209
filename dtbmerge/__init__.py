"""Merge Daisy 2.02 talking book fragments into a single DTB."""

__version__ = "0.1.0"

GENERATOR = f"dtbmerge v{__version__}"
