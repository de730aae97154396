"""kvsync -- keep a local key-value store in step with a remote store."""

__version__ = "0.1.0"
