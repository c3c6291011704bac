"""Shared request policy for price provider clients.

Every provider client routes its network calls through
:meth:`ProviderClientBase._call`, which applies the same rules:

- HTTP 429: retry with linearly increasing backoff (base delay x attempt),
  then give up with :class:`RateLimitedError`.
- HTTP 403: mark that endpoint forbidden for a cooldown window; calls
  inside the window short-circuit without touching the network.
- Other HTTP errors and transport failures raise typed provider errors.

Public quote and history methods convert all of these to "no data" via
:meth:`ProviderClientBase._guard`; symbol search uses
:meth:`ProviderClientBase._checked` so an outage stays distinguishable
from an empty result.
"""

import logging
import threading
import time as time_module
from typing import Any, Callable, Optional, TypeVar

import httpx

from integrations.exceptions import (
    NoDataError,
    ProviderAPIError,
    ProviderConnectionError,
    ProviderDataError,
    ProviderError,
    ProviderForbiddenError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 2
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_FORBIDDEN_COOLDOWN_SECONDS = 300.0


class EndpointCircuitBreaker:
    """Per-endpoint cooldown after a provider answers 403.

    Endpoints are tracked independently: a blocked ``candle`` endpoint does
    not stop ``quote`` calls to the same provider.
    """

    def __init__(
        self,
        cooldown_seconds: float = DEFAULT_FORBIDDEN_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time_module.monotonic,
    ):
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._forbidden_until: dict[str, float] = {}
        self._lock = threading.Lock()

    @property
    def cooldown_seconds(self) -> float:
        return self._cooldown_seconds

    def trip(self, endpoint: str) -> None:
        """Mark an endpoint forbidden for the cooldown window, starting now."""
        with self._lock:
            self._forbidden_until[endpoint] = self._clock() + self._cooldown_seconds

    def is_open(self, endpoint: str) -> bool:
        """Return True while the endpoint is inside its cooldown window."""
        with self._lock:
            until = self._forbidden_until.get(endpoint)
            if until is None:
                return False
            if self._clock() < until:
                return True
            del self._forbidden_until[endpoint]
            return False

    def reset(self) -> None:
        with self._lock:
            self._forbidden_until.clear()


class ProviderClientBase:
    """Base class holding the retry / cooldown policy for one provider."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        breaker: Optional[EndpointCircuitBreaker] = None,
        sleep: Callable[[float], None] = time_module.sleep,
    ):
        self._max_retries = max_retries
        self._base_delay_seconds = base_delay_seconds
        self._breaker = breaker or EndpointCircuitBreaker()
        self._sleep = sleep

    @property
    def provider_name(self) -> str:
        raise NotImplementedError

    @property
    def breaker(self) -> EndpointCircuitBreaker:
        return self._breaker

    def close(self) -> None:
        """Release any resources held by the client."""

    def _status_of(self, exc: Exception) -> Optional[int]:
        """Extract an HTTP status code from an exception, if it carries one."""
        if isinstance(exc, httpx.HTTPStatusError):
            return exc.response.status_code
        return None

    def _call(self, endpoint: str, func: Callable[[], T]) -> T:
        """Run ``func`` under the provider error policy.

        Raises:
            ProviderForbiddenError: endpoint answered 403 or is cooling down.
            RateLimitedError: still 429 after all retries.
            ProviderAPIError: any other HTTP error status.
            ProviderConnectionError: transport-level failure.
        """
        name = self.provider_name
        if self._breaker.is_open(endpoint):
            logger.debug("%s: %s endpoint is cooling down, skipping call", name, endpoint)
            raise ProviderForbiddenError(
                f"{name}: {endpoint} endpoint is cooling down", name, endpoint
            )

        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return func()
            except ProviderError:
                raise
            except Exception as exc:
                status = self._status_of(exc)
                if status == 429:
                    if attempt >= attempts:
                        logger.warning(
                            "%s: rate limited on %s, giving up after %d attempts",
                            name, endpoint, attempts,
                        )
                        raise RateLimitedError(
                            f"{name}: rate limited on {endpoint}", name
                        ) from exc
                    delay = self._base_delay_seconds * attempt
                    logger.warning(
                        "%s: rate limited on %s, retrying in %.1fs (attempt %d/%d)",
                        name, endpoint, delay, attempt, attempts,
                    )
                    self._sleep(delay)
                    continue
                if status == 403:
                    self._breaker.trip(endpoint)
                    logger.warning(
                        "%s: %s endpoint forbidden, suppressing calls for %.0fs",
                        name, endpoint, self._breaker.cooldown_seconds,
                    )
                    raise ProviderForbiddenError(
                        f"{name}: {endpoint} endpoint forbidden", name, endpoint
                    ) from exc
                if status is not None:
                    raise ProviderAPIError(
                        f"{name}: {endpoint} returned HTTP {status}", name, status_code=status
                    ) from exc
                if isinstance(exc, httpx.TransportError):
                    raise ProviderConnectionError(
                        f"{name}: {endpoint} request failed: {exc}", name
                    ) from exc
                raise

        # Unreachable: the loop either returns or raises.
        raise RateLimitedError(f"{name}: rate limited on {endpoint}", name)

    def _guard(self, description: str, default: T, func: Callable[..., T], *args: Any) -> T:
        """Call ``func`` and convert any failure into ``default`` ("no data").

        Provider failures never reach the caller; they are logged here.
        """
        try:
            return func(*args)
        except NoDataError:
            logger.debug("%s: no data for %s", self.provider_name, description)
        except ProviderError as e:
            logger.warning("%s: %s unavailable: %s", self.provider_name, description, e)
        except Exception:
            logger.warning(
                "%s: failed to fetch %s", self.provider_name, description, exc_info=True
            )
        return default

    def _checked(self, description: str, default: T, func: Callable[..., T], *args: Any) -> T:
        """Call ``func``, mapping "no data" to ``default`` but surfacing failures.

        For callers that must tell an empty answer from an unreachable
        provider, such as symbol search.

        Raises:
            ProviderError: the provider failed or could not be reached.
        """
        try:
            return func(*args)
        except NoDataError:
            logger.debug("%s: no data for %s", self.provider_name, description)
            return default
        except ProviderError as e:
            logger.warning("%s: %s unavailable: %s", self.provider_name, description, e)
            raise
        except Exception as e:
            logger.warning(
                "%s: failed to fetch %s", self.provider_name, description, exc_info=True
            )
            raise ProviderError(
                f"{self.provider_name}: {description} failed: {e}", self.provider_name
            ) from e


class HTTPProviderClient(ProviderClientBase):
    """Provider client backed by an ``httpx.Client``."""

    def __init__(
        self,
        base_url: str,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 15.0,
        **policy: Any,
    ):
        super().__init__(**policy)
        self._client = httpx.Client(base_url=base_url, headers=headers or {}, timeout=timeout)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def _get_json(self, endpoint: str, path: str, params: Optional[dict] = None) -> Any:
        """GET ``path`` under the provider policy and decode the JSON body."""

        def send() -> Any:
            response = self._client.request("GET", path, params=params)
            response.raise_for_status()
            try:
                return response.json()
            except ValueError as exc:
                raise ProviderDataError(
                    f"{self.provider_name}: {endpoint} returned invalid JSON",
                    self.provider_name,
                ) from exc

        return self._call(endpoint, send)
