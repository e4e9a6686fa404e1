"""Retrieval-augmented exam generation over a folder of notes."""

__version__ = "0.1.0"
