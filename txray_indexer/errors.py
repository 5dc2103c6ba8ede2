class IndexerError(Exception):
    """Base class for everything the indexer raises on purpose."""


class ConfigError(IndexerError):
    pass


class RpcError(IndexerError):
    def __init__(self, message: str, *, retryable: bool = False, status: int | None = None,
                 retry_after: float | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.status = status
        self.retry_after = retry_after


class DecodeError(IndexerError):
    pass


class PersistenceError(IndexerError):
    pass


class AuthorizationError(IndexerError):
    pass


class LeaseHeldError(IndexerError):
    """Another run holds the cursor lease."""
