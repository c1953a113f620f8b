"""MovieSync: keeps the movie search index in step with the catalogue database."""

__version__ = "0.1.0"
