"""Index update engine for the package search service."""

__version__ = "0.1.0"
