from define.ledger.chain import validate_append, verify_chain
from define.ledger.events import (
    confirmed_missing_tx_hashes,
    merge_events,
    prune_missing,
    sort_events,
)

__all__ = [
    "validate_append",
    "verify_chain",
    "confirmed_missing_tx_hashes",
    "merge_events",
    "prune_missing",
    "sort_events",
]
