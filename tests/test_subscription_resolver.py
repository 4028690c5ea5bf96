#!/usr/bin/env python3
# CUI // SP-CTI
"""Tests for atoengine.compliance.subscription_resolver."""

from unittest.mock import MagicMock, patch

import pytest
import requests
from conftest import OTHER_SUB, SUB

from atoengine.compliance.subscription_resolver import (
    GuidStrategy,
    RemoteLookupStrategy,
    StaticTableStrategy,
    SubscriptionResolver,
    is_guid,
    require_guid,
)
from atoengine.resilience.errors import ValidationError

DIRECTORY_URL = "https://directory.example.mil/api/subscriptions"
FINANCE_SUB = "abcdefab-1234-5678-9abc-def012345678"


@pytest.fixture(autouse=True)
def _no_sleep():
    with patch("atoengine.resilience.retry.time.sleep"):
        yield


def _session(payload=None, error=None, status=200):
    session = MagicMock()
    response = MagicMock()
    response.json.return_value = payload if payload is not None else {"subscriptions": []}
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            response=MagicMock(status_code=status),
        )
    session.get.return_value = response
    if error is not None:
        session.get.side_effect = error
    return session


class TestGuidHelpers:
    def test_is_guid(self):
        assert is_guid(SUB)
        assert is_guid("{" + SUB.upper() + "}")
        assert not is_guid("production")
        assert not is_guid("")

    def test_require_guid_normalizes(self):
        assert require_guid("{" + SUB.upper() + "}") == SUB

    def test_require_guid_rejects_names(self):
        with pytest.raises(ValidationError):
            require_guid("production")


class TestStrategies:
    def test_guid_strategy(self):
        assert GuidStrategy().resolve(" " + SUB.upper() + " ") == SUB
        assert GuidStrategy().resolve("staging") is None

    def test_static_table_is_case_insensitive(self):
        table = StaticTableStrategy({"Production": SUB.upper()})
        assert table.resolve("PRODUCTION") == SUB
        assert table.resolve("missing") is None
        assert table.known_names() == ["production"]

    def test_static_table_skips_bad_guid(self):
        assert StaticTableStrategy({"broken": "not-a-guid"}).resolve("broken") is None


class TestSubscriptionResolver:
    @pytest.fixture
    def resolver(self, config):
        return SubscriptionResolver.from_config(config)

    def test_name_and_guid(self, resolver):
        assert resolver.resolve("Production") == SUB
        assert resolver.resolve(OTHER_SUB.upper()) == OTHER_SUB

    def test_empty_reuses_last_used(self, resolver):
        resolver.resolve("staging")
        assert resolver.last_used == OTHER_SUB
        assert resolver.resolve("") == OTHER_SUB
        assert resolver.resolve(None) == OTHER_SUB

    def test_empty_without_history(self, resolver):
        with pytest.raises(ValidationError) as exc_info:
            resolver.resolve("  ")
        assert "No previous subscription" in str(exc_info.value)
        assert exc_info.value.valid_values == ["production", "staging"]

    def test_unknown_name_lists_available(self, resolver):
        with pytest.raises(ValidationError) as exc_info:
            resolver.resolve("nope")
        assert str(exc_info.value) == (
            "Subscription 'nope' not found. Available names: production, staging. "
            "Or provide a valid GUID."
        )

    def test_available_names_bounded(self, config):
        names = {f"env{n}": SUB for n in range(8)}
        cfg = config.with_overrides(named_subscriptions=names, available_names_limit=3)
        resolver = SubscriptionResolver.from_config(cfg)
        assert resolver.available_names() == ["env0", "env1", "env2"]

    def test_failed_lookup_keeps_last_used(self, resolver):
        resolver.resolve("production")
        with pytest.raises(ValidationError):
            resolver.resolve("nope")
        assert resolver.last_used == SUB


class TestRemoteLookup:
    def test_directory_hit(self, config):
        session = _session({"subscriptions": [{"name": "Finance", "id": FINANCE_SUB.upper()}]})
        cfg = config.with_overrides(subscription_directory_url=DIRECTORY_URL)
        resolver = SubscriptionResolver.from_config(cfg, session=session)
        assert resolver.resolve("finance") == FINANCE_SUB
        session.get.assert_called_once_with(DIRECTORY_URL, params={"name": "finance"}, timeout=10.0)

    def test_directory_miss_falls_through_to_table(self, config):
        session = _session({"subscriptions": [{"name": "other", "id": FINANCE_SUB}]})
        cfg = config.with_overrides(subscription_directory_url=DIRECTORY_URL)
        resolver = SubscriptionResolver.from_config(cfg, session=session)
        assert resolver.resolve("production") == SUB

    def test_guid_input_skips_directory(self, config):
        session = _session()
        cfg = config.with_overrides(subscription_directory_url=DIRECTORY_URL)
        SubscriptionResolver.from_config(cfg, session=session).resolve(SUB)
        session.get.assert_not_called()

    def test_connection_error_retried_then_skipped(self):
        session = _session(error=requests.exceptions.ConnectionError("refused"))
        strategy = RemoteLookupStrategy(DIRECTORY_URL, session=session)
        assert strategy.resolve("finance") is None
        assert session.get.call_count == 3

    def test_client_error_not_retried(self):
        session = _session(status=404)
        strategy = RemoteLookupStrategy(DIRECTORY_URL, session=session)
        assert strategy.resolve("finance") is None
        assert session.get.call_count == 1

    def test_invalid_json_skipped(self):
        session = _session()
        session.get.return_value.json.side_effect = ValueError("no JSON")
        assert RemoteLookupStrategy(DIRECTORY_URL, session=session).resolve("finance") is None
        assert session.get.call_count == 1

    @pytest.mark.parametrize("payload", [
        ["not", "an", "object"],
        {"subscriptions": "production"},
        {"subscriptions": None},
    ])
    def test_unexpected_payload_falls_through_to_table(self, config, payload):
        session = _session(payload)
        cfg = config.with_overrides(subscription_directory_url=DIRECTORY_URL)
        resolver = SubscriptionResolver.from_config(cfg, session=session)
        assert resolver.resolve("production") == SUB
        assert session.get.call_count == 1

    def test_non_object_entries_ignored(self):
        session = _session({"subscriptions": ["finance", {"name": "finance", "id": FINANCE_SUB}]})
        assert RemoteLookupStrategy(DIRECTORY_URL, session=session).resolve("finance") == FINANCE_SUB

    @pytest.mark.parametrize("error", [
        requests.exceptions.TooManyRedirects("redirect loop"),
        requests.exceptions.InvalidURL("bad url"),
    ])
    def test_other_request_errors_fall_through_to_table(self, config, error):
        session = _session(error=error)
        cfg = config.with_overrides(subscription_directory_url=DIRECTORY_URL)
        resolver = SubscriptionResolver.from_config(cfg, session=session)
        assert resolver.resolve("production") == SUB
        assert session.get.call_count == 1


    def test_circuit_opens_after_repeated_failures(self, config):
        session = _session(status=404)
        cfg = config.with_overrides(subscription_directory_url=DIRECTORY_URL)
        resolver = SubscriptionResolver.from_config(cfg, session=session)
        for _ in range(3):
            assert resolver.resolve("production") == SUB
        assert session.get.call_count == 3
        # Open circuit: the directory is not called, static table still answers.
        assert resolver.resolve("staging") == OTHER_SUB
        assert session.get.call_count == 3
