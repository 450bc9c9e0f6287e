"""Custom exception hierarchy for xcred."""


class XcredError(Exception):
    """Base exception for all xcred errors."""


class FetchError(XcredError):
    """Failed to fetch a raw profile."""


class MalformedResponseError(FetchError):
    """Response was a success but did not have the expected shape."""


class StoreError(XcredError):
    """Persistent store operation failed."""


class RemoteStoreError(XcredError):
    """Remote shared store unavailable or rejected the request."""


class AuthorityError(XcredError):
    """Consensus authority unreachable or rejected the request."""


class ConfigError(XcredError):
    """Invalid configuration."""
