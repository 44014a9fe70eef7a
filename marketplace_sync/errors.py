"""
Exception hierarchy for marketplace_sync.

Host fetch errors are recoverable: the reconciler logs them and moves on.
Store errors propagate out of a single package conversion and are recorded by
the batch importer.
"""


class MarketplaceError(Exception):
    """Base class for all marketplace_sync errors."""


class MalformedUpstreamData(MarketplaceError):
    """A registry document is structurally unusable (e.g. missing a name)."""


# ── Record store ──────────────────────────────────────────────────────────────

class StoreError(MarketplaceError):
    """Base class for record store failures."""


class StoreWriteFailure(StoreError):
    """A child creation, property write or removal could not be applied."""


class SchemaError(StoreWriteFailure):
    """A write used a kind or property name the record schema does not declare."""


# ── Host metrics ──────────────────────────────────────────────────────────────

class HostFetchError(MarketplaceError):
    """Base class for source-hosting API failures."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class RateLimited(HostFetchError):
    """The host API refused the request because the rate limit is exhausted."""


class HostNotFound(HostFetchError):
    """The repository (or its README) does not exist on the host."""


class HostError(HostFetchError):
    """Any other host failure: HTTP error, network error, unexpected payload."""
