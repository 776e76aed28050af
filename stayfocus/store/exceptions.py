"""Custom exceptions for persistent store errors."""


class StoreError(Exception):
    """Base exception for persistent store errors."""
    pass


class AuthenticationError(StoreError):
    """Missing, invalid or expired access token."""
    pass


class NetworkError(StoreError):
    """Network connectivity issues or request timeout."""
    pass


class DataNotFoundError(StoreError):
    """Requested record does not exist or is not owned by the caller."""
    pass


class InvalidResponseError(StoreError):
    """Store returned an unexpected response format."""
    pass


class UnsupportedOperationError(StoreError):
    """Queued operation targets an unknown collection or kind."""
    pass
