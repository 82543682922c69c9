"""Unit tests for SubscriptionRegistry."""

import asyncio

import pytest

from vendlive.errors import InvalidPatternError
from vendlive.runtime.registry import SubscriptionRegistry


def handler_a(topic, payload):
    pass


def handler_b(topic, payload):
    pass


class TestRegistryStorage:
    """Tests for add/remove/get bookkeeping."""

    def test_add_stores_entry(self):
        registry = SubscriptionRegistry()

        entry = registry.add("machines/+/status", handler_a, qos=1)

        assert registry.get("machines/+/status") is entry
        assert entry.qos == 1
        assert "machines/+/status" in registry
        assert len(registry) == 1

    def test_add_same_pattern_replaces_handler_and_keeps_position(self):
        registry = SubscriptionRegistry()
        registry.add("a/#", handler_a)
        registry.add("b/#", handler_a)

        registry.add("a/#", handler_b, qos=2)

        assert registry.patterns == ["a/#", "b/#"]
        assert registry.get("a/#").handler is handler_b
        assert registry.get("a/#").qos == 2
        assert len(registry) == 2

    def test_add_invalid_pattern_stores_nothing(self):
        registry = SubscriptionRegistry()

        with pytest.raises(InvalidPatternError):
            registry.add("a/#/b", handler_a)

        assert len(registry) == 0

    def test_add_rejects_non_callable_handler(self):
        registry = SubscriptionRegistry()

        with pytest.raises(TypeError, match="callable"):
            registry.add("a/b", "not-a-handler")

    def test_add_rejects_invalid_qos(self):
        registry = SubscriptionRegistry()

        with pytest.raises(ValueError):
            registry.add("a/b", handler_a, qos=5)

    def test_remove_returns_entry(self):
        registry = SubscriptionRegistry()
        entry = registry.add("a/b", handler_a)

        assert registry.remove("a/b") is entry
        assert "a/b" not in registry

    def test_remove_unknown_is_noop(self):
        registry = SubscriptionRegistry()

        assert registry.remove("never/added") is None

    def test_matching_follows_registration_order(self):
        registry = SubscriptionRegistry()
        registry.add("machines/#", handler_a)
        registry.add("machines/+/status", handler_b)
        registry.add("alerts/#", handler_a)

        matched = registry.matching("machines/3/status")

        assert [entry.pattern for entry in matched] == ["machines/#", "machines/+/status"]


@pytest.mark.asyncio
class TestReplayAll:
    """Tests for replay_all()."""

    async def test_replays_every_entry(self):
        registry = SubscriptionRegistry()
        registry.add("a/#", handler_a)
        registry.add("b/+", handler_b, qos=1)
        issued = []

        async def issue(entry):
            issued.append((entry.pattern, entry.qos))

        failures = await registry.replay_all(issue, lambda entry, exc: None)

        assert failures == 0
        assert sorted(issued) == [("a/#", 0), ("b/+", 1)]

    async def test_failures_are_reported_and_do_not_abort(self):
        registry = SubscriptionRegistry()
        registry.add("bad/#", handler_a)
        registry.add("good/#", handler_b)
        issued = []
        reported = []

        async def issue(entry):
            await asyncio.sleep(0)
            if entry.pattern == "bad/#":
                raise RuntimeError("refused")
            issued.append(entry.pattern)

        failures = await registry.replay_all(issue, lambda entry, exc: reported.append((entry.pattern, exc)))

        assert failures == 1
        assert issued == ["good/#"]
        assert reported[0][0] == "bad/#"
        assert isinstance(reported[0][1], RuntimeError)

    async def test_empty_registry_issues_nothing(self):
        registry = SubscriptionRegistry()

        async def issue(entry):
            raise AssertionError("must not be called")

        assert await registry.replay_all(issue, lambda entry, exc: None) == 0
