"""Building blocks for a JSON web API: binding, encryption, caching, transport, storage and tokens."""

__version__ = "0.1.0"

__all__ = ["binder", "cache", "encryptor", "storage", "tokens", "transport"]