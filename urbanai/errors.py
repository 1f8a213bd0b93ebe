"""Exception hierarchy shared by providers, storage and the coordinator."""


class UrbanAIError(Exception):
    """Base class for aggregator errors."""


class UpstreamError(UrbanAIError):
    """An upstream provider could not supply usable data."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class UpstreamUnavailable(UpstreamError):
    """Network failure, timeout, non-2xx status or missing credentials."""


class SchemaMismatch(UpstreamError):
    """The provider answered, but not in the shape we expect."""


class PersistenceError(UrbanAIError):
    """The durable key-value store rejected a read or write."""


class InvalidLocationError(UrbanAIError, ValueError):
    """Coordinates are outside the valid latitude/longitude ranges."""
