"""Retrieval-augmented generation core for tenant-scoped chatbot agents."""

__version__ = "0.1.0"
