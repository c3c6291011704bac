"""Typed exception hierarchy for price provider errors.

Provides structured exceptions for differentiated error handling
(no data vs rate limiting vs blocked endpoints vs bad symbols).
Provider clients raise these internally and convert them to
"no data" at their quote and history boundary. Symbol validation
surfaces ``SymbolNotFoundError`` for a bad ticker and the other
``ProviderError`` types when the search itself could not run.
"""


class ProviderError(Exception):
    """Base exception for all provider-related errors.

    Carries the provider name so callers can identify which provider failed.
    """

    def __init__(self, message: str, provider_name: str = ""):
        self.provider_name = provider_name
        super().__init__(message)


class NoDataError(ProviderError):
    """Provider answered but returned nothing usable (empty or zero payload)."""

    pass


class ProviderConnectionError(ProviderError):
    """Network failures such as timeouts or refused connections.

    Retriable by default.
    """

    def __init__(self, message: str, provider_name: str = "", retriable: bool = True):
        self.retriable = retriable
        super().__init__(message, provider_name)


class ProviderAPIError(ProviderError):
    """HTTP 4xx/5xx responses from the provider API."""

    def __init__(
        self,
        message: str,
        provider_name: str = "",
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider_name)

    @property
    def retriable(self) -> bool:
        """429 (rate limit) and 5xx errors are generally retriable."""
        if self.status_code is None:
            return False
        return self.status_code == 429 or self.status_code >= 500


class RateLimitedError(ProviderAPIError):
    """HTTP 429 after the retry budget was exhausted."""

    def __init__(self, message: str, provider_name: str = ""):
        super().__init__(message, provider_name, status_code=429)


class ProviderForbiddenError(ProviderAPIError):
    """HTTP 403, or a call short-circuited by an open endpoint cooldown."""

    def __init__(self, message: str, provider_name: str = "", endpoint: str = ""):
        self.endpoint = endpoint
        super().__init__(message, provider_name, status_code=403)


class ProviderDataError(ProviderError):
    """Malformed or unparseable response from the provider."""

    pass


class SymbolNotFoundError(ProviderError):
    """A user-entered symbol could not be resolved for its asset class.

    Unlike the other provider errors this one is surfaced to the caller so
    an invalid ticker can be rejected at entry time.
    """

    def __init__(self, symbol: str, asset_class: str = "", provider_name: str = ""):
        self.symbol = symbol
        self.asset_class = asset_class
        message = f"Symbol {symbol!r} not recognized"
        if asset_class:
            message += f" for asset class {asset_class}"
        super().__init__(message, provider_name)


class PersistenceError(Exception):
    """Writing to or reading from the durable price cache failed.

    Logged and never propagated; the in-memory cache is authoritative.
    """

    pass
