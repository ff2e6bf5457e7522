"""City Digest - content curation pipeline for a daily NYC digest."""

__version__ = "0.1.0"
