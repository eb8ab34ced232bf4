"""brewsync: sync a local key-value dataset with an S3-compatible store."""

__version__ = "0.1.0"
