"""msgrag - local retrieval-augmented question answering over message records."""

__version__ = "0.1.0"
