"""
Tests for strategy parsing and provider selection.
"""

import pytest

from filestore.core.exceptions import NoHealthyProvidersError, ProviderConfigError
from filestore.core.interfaces.storage import StorageStrategy
from filestore.services.selection import ProviderSelector, parse_strategy


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("primary", StorageStrategy.PRIMARY),
        ("FAILOVER", StorageStrategy.FAILOVER),
        ("round_robin", StorageStrategy.ROUND_ROBIN),
        ("Load_Balance", StorageStrategy.LOAD_BALANCE),
        (StorageStrategy.PRIMARY, StorageStrategy.PRIMARY),
    ],
)
def test_parse_strategy(value, expected):
    assert parse_strategy(value) is expected


def test_parse_unknown_strategy():
    with pytest.raises(ProviderConfigError):
        parse_strategy("random")


@pytest.mark.parametrize("strategy", ["primary", "failover"])
def test_fixed_strategies_pick_first(strategy):
    selector = ProviderSelector(strategy)

    picks = [selector.select(["a", "b", "c"]) for _ in range(4)]

    assert not selector.rotates
    assert picks == ["a", "a", "a", "a"]


@pytest.mark.parametrize("strategy", ["round_robin", "load_balance"])
def test_rotating_strategies(strategy):
    selector = ProviderSelector(strategy)

    picks = [selector.select(["a", "b", "c"]) for _ in range(5)]

    assert selector.rotates
    assert picks == ["a", "b", "c", "a", "b"]


def test_rotation_survives_candidate_set_changes():
    """The counter keeps advancing when the healthy set shrinks."""
    selector = ProviderSelector("round_robin")

    assert selector.select(["a", "b", "c"]) == "a"
    assert selector.select(["a", "c"]) == "c"
    assert selector.select(["a", "b", "c"]) == "c"


def test_empty_candidates():
    with pytest.raises(NoHealthyProvidersError):
        ProviderSelector().select([])
