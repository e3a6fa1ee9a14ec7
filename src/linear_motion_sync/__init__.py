"""Linear to Motion task synchronizer."""

__version__ = "0.1.0"
