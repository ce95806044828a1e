"""Error types shared by the tuning, document and generation services."""


class StorageUnavailable(Exception):
    """A durable store or blob store call failed or timed out."""


class DocumentNotFound(Exception):
    """The requested document has no stored bytes and no verification record."""


class GenerationUnavailable(Exception):
    """The generation API is not configured or the call failed."""
