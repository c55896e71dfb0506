import pytest

from changing_stations.core import chains


@pytest.mark.parametrize(
    "name",
    [
        "Target",
        "SuperTarget Store #123",
        "WALMART SUPERCENTER",
        "Chick-fil-A",
        "The Home Depot",
        "Buc-ee's Crossville",
        'Babies"R"Us',
    ],
)
def test_guaranteed_chain_matches(name):
    assert chains.is_guaranteed_chain(name) is True


@pytest.mark.parametrize("name", ["Joe's Diner", "Starbucks", "", None])
def test_not_guaranteed_chain(name):
    assert chains.is_guaranteed_chain(name) is False


def test_guaranteed_substring_match_is_loose():
    # Substring matching accepts any name that embeds a chain name.
    assert chains.is_guaranteed_chain("Targeted Marketing LLC") is True


def test_chain_id_sets_ship_empty():
    # Ids come only from EXTRA_PRIORITY_CHAIN_IDS / EXTRA_SECONDARY_CHAIN_IDS.
    assert chains.PRIORITY_CHAIN_IDS == frozenset()
    assert chains.SECONDARY_CHAIN_IDS == frozenset()
    assert len(chains.GUARANTEED_CHAINS) == 18
