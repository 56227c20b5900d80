from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from define.constants import NFPM_DEPLOYMENT_BLOCKS


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for `LedgerSyncService`."""

    # chain id → first block a full resync starts from
    deployment_blocks: Mapping[int, int] = field(default_factory=lambda: dict(NFPM_DEPLOYMENT_BLOCKS))
    concurrency: int = 4
    sync_by: str = "define"

    def deployment_block(self, chain_id: int) -> int:
        return self.deployment_blocks.get(chain_id, 0)
