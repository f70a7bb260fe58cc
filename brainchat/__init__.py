"""Note capture and multi-provider chat over a GitHub brain repository."""

__version__ = "0.1.0"
