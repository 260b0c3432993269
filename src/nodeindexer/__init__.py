"""Node indexer: keep a search index in sync with a crawler's peer dump."""

__version__ = "0.1.0"
