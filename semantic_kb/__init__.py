"""semantic-kb: semantic knowledge bases over documents and source code."""

__version__ = "0.1.0"
