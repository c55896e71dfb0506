"""Curated chain lists used to classify and score places."""

from typing import FrozenSet, Optional

# Businesses whose corporate policy guarantees a changing station.
GUARANTEED_CHAINS = (
    "Target",
    "Walmart",
    "Kroger",
    "Meijer",
    "Chick-fil-A",
    "Panera Bread",
    "Love's Travel Stop",
    "Pilot Flying J",
    "Buc-ee's",
    "Barnes & Noble",
    "Buy Buy Baby",
    'Babies"R"Us',
    "Whole Foods Market",
    "Wegmans",
    "H-E-B",
    "Publix",
    "Home Depot",
    "Lowe's",
)

_GUARANTEED_LOWER = tuple(chain.lower() for chain in GUARANTEED_CHAINS)

# Places-provider chain ids that score as priority or secondary chains. No
# curated catalog ships with the package; deployments list the ids for their
# provider in EXTRA_PRIORITY_CHAIN_IDS and EXTRA_SECONDARY_CHAIN_IDS.
PRIORITY_CHAIN_IDS: FrozenSet[str] = frozenset()
SECONDARY_CHAIN_IDS: FrozenSet[str] = frozenset()


def is_guaranteed_chain(name: Optional[str]) -> bool:
    """Case-insensitive substring match of ``name`` against :data:`GUARANTEED_CHAINS`."""
    if not name:
        return False
    lowered = name.lower()
    return any(chain in lowered for chain in _GUARANTEED_LOWER)
