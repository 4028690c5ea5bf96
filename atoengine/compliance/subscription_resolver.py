#!/usr/bin/env python3
# CUI // SP-CTI
"""Subscription name resolution.

Engine calls need a subscription GUID; callers may pass a GUID or a friendly
name. Resolution runs an explicit strategy chain:

    GuidStrategy          -- input already is a GUID
    RemoteLookupStrategy  -- HTTP subscription directory (requests, retry,
                             circuit breaker); failures are logged and skipped
    StaticTableStrategy   -- immutable name table from EngineConfig

If every strategy misses, a ValidationError lists a bounded set of known
names. Each strategy is usable and testable on its own.
"""

import logging
import re
import threading
from abc import ABC, abstractmethod
from typing import List, Mapping, Optional, Sequence

import requests

from atoengine.resilience.circuit_breaker import circuit_breaker
from atoengine.resilience.errors import (
    AtoEngineTransientError,
    UpstreamUnavailableError,
    ValidationError,
)
from atoengine.resilience.retry import retry

logger = logging.getLogger("atoengine.compliance.subscription_resolver")

GUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)
DIRECTORY_SERVICE = "subscription-directory"


def is_guid(value: str) -> bool:
    return bool(value) and bool(GUID_RE.match(value.strip().strip("{}")))


def require_guid(value: str) -> str:
    """Normalize a GUID or raise ValidationError (no name lookup)."""
    if not is_guid(value or ""):
        raise ValidationError(
            f"Subscription id '{value}' is not a valid GUID",
            hint="Resolve friendly names with the subscription resolver first",
        )
    return value.strip().strip("{}").lower()


class ResolutionStrategy(ABC):
    name = "strategy"

    @abstractmethod
    def resolve(self, value: str) -> Optional[str]:
        """Return a GUID, or None to let the next strategy try."""

    def known_names(self) -> List[str]:
        return []


class GuidStrategy(ResolutionStrategy):
    name = "guid"

    def resolve(self, value):
        if is_guid(value):
            return value.strip().strip("{}").lower()
        return None


class RemoteLookupStrategy(ResolutionStrategy):
    """Looks names up in an HTTP directory.

    Expected response: ``{"subscriptions": [{"name": "...", "id": "<guid>"}]}``
    """

    name = "remote"

    def __init__(self, url: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self._session = session

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"Accept": "application/json"})
        return self._session

    @circuit_breaker(DIRECTORY_SERVICE, failure_threshold=3, recovery_timeout_seconds=60.0)
    @retry(max_retries=2, base_delay=0.25, retryable_exceptions=(AtoEngineTransientError,))
    def _fetch(self, name: str) -> List[dict]:
        try:
            response = self._get_session().get(
                self.url, params={"name": name}, timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
            raise UpstreamUnavailableError(
                f"Subscription directory unreachable: {exc}", service=DIRECTORY_SERVICE,
            ) from exc
        except requests.exceptions.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else 0
            raise UpstreamUnavailableError(
                f"Subscription directory returned HTTP {status}",
                service=DIRECTORY_SERVICE,
                retryable=status >= 500,
            ) from exc
        except requests.exceptions.RequestException as exc:
            raise UpstreamUnavailableError(
                f"Subscription directory request failed: {exc}",
                service=DIRECTORY_SERVICE,
                retryable=False,
            ) from exc
        except ValueError as exc:
            raise UpstreamUnavailableError(
                f"Subscription directory returned invalid JSON: {exc}",
                service=DIRECTORY_SERVICE,
                retryable=False,
            ) from exc

        entries = payload.get("subscriptions", []) if isinstance(payload, dict) else None
        if not isinstance(entries, list):
            raise UpstreamUnavailableError(
                "Subscription directory returned an unexpected payload",
                service=DIRECTORY_SERVICE,
                retryable=False,
            )
        return [entry for entry in entries if isinstance(entry, dict)]

    def resolve(self, value):
        try:
            entries = self._fetch(value)
        except UpstreamUnavailableError as exc:
            logger.warning("Remote lookup for '%s' failed, trying static table: %s", value, exc)
            return None
        wanted = value.strip().lower()
        for entry in entries:
            if str(entry.get("name", "")).lower() == wanted and is_guid(str(entry.get("id", ""))):
                logger.info("Resolved subscription '%s' via directory", value)
                return str(entry["id"]).lower()
        return None


class StaticTableStrategy(ResolutionStrategy):
    name = "static"

    def __init__(self, table: Mapping[str, str]):
        self._table = {k.lower(): v for k, v in table.items()}

    def resolve(self, value):
        guid = self._table.get(value.strip().lower())
        if guid and is_guid(guid):
            return guid.lower()
        return None

    def known_names(self):
        return list(self._table)


class SubscriptionResolver:
    """Runs the strategy chain and remembers the last resolved subscription."""

    def __init__(self, strategies: Sequence[ResolutionStrategy], available_names_limit: int = 5):
        self._strategies = list(strategies)
        self._limit = available_names_limit
        self._last_used: Optional[str] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config, session: Optional[requests.Session] = None) -> "SubscriptionResolver":
        strategies: List[ResolutionStrategy] = [GuidStrategy()]
        if config.subscription_directory_url:
            strategies.append(RemoteLookupStrategy(
                config.subscription_directory_url,
                timeout=config.subscription_directory_timeout,
                session=session,
            ))
        strategies.append(StaticTableStrategy(config.named_subscriptions))
        return cls(strategies, available_names_limit=config.available_names_limit)

    @property
    def last_used(self) -> Optional[str]:
        with self._lock:
            return self._last_used

    def available_names(self) -> List[str]:
        names: List[str] = []
        for strategy in self._strategies:
            for name in strategy.known_names():
                if name not in names:
                    names.append(name)
        return names[:self._limit]

    def resolve(self, value: Optional[str]) -> str:
        """Return the subscription GUID for a GUID or friendly name.

        An empty value reuses the last subscription resolved by this resolver.
        """
        if not value or not value.strip():
            last = self.last_used
            if last:
                logger.info("Using last used subscription %s", last)
                return last
            raise ValidationError(
                "Subscription ID or name is required. No previous subscription found.",
                valid_values=self.available_names(),
            )
        for strategy in self._strategies:
            guid = strategy.resolve(value)
            if guid:
                logger.debug("Subscription '%s' resolved by %s strategy", value, strategy.name)
                with self._lock:
                    self._last_used = guid
                return guid
        names = self.available_names()
        raise ValidationError(
            f"Subscription '{value}' not found. "
            f"Available names: {', '.join(names) if names else '(none)'}. "
            "Or provide a valid GUID.",
            valid_values=names,
        )
