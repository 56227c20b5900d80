"""Event specification primitives and registry typing.

- `TopicFieldSpec` / `DataFieldSpec`: typed sources for indexed topics / data words
- `EventSpec`: one event rule (topic0, name, fields)
- `EventRegistry`: mapping from topic0 → EventSpec
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TopicFieldSpec:
    """Describe one indexed topic field (by topic index and ABI type)."""

    name: str
    index: int
    type: str  # e.g., "address", "uint256", "int24"


@dataclass(frozen=True)
class DataFieldSpec:
    """Describe one 32-byte ABI word in the data section (0-based word index)."""

    name: str
    word_index: int
    type: str


@dataclass(frozen=True)
class EventSpec:
    """How to turn one event's topics and data words into named values."""

    topic0: str
    name: str
    topic_fields: list[TopicFieldSpec]
    data_fields: list[DataFieldSpec]

    @property
    def min_data_words(self) -> int:
        return max((df.word_index for df in self.data_fields), default=-1) + 1


# The full registry keyed by topic0 (lowercased 0x-hex).
EventRegistry = dict[str, EventSpec]


def registry_topic0s(registry: EventRegistry) -> list[str]:
    return [spec.topic0 for spec in registry.values()]
