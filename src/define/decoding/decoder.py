"""Event decoder driven by an `EventRegistry`.

Translates raw `EventLog` records into `DecodedLog` using the topic and data
field specs registered for the log's topic0. Integer fields stay Python ints
so uint256 amounts are never truncated.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from define.core.models import EventLog
from define.decoding.specs import EventRegistry, EventSpec, TopicFieldSpec

# ---------- decoded log ----------


@dataclass(slots=True)
class DecodedLog:
    """Decoded event: spec name, named values and the originating log."""

    name: str
    values: dict[str, Any]
    log: EventLog


# ---------- ABI word helpers ----------


def word_at(data: bytes, i: int) -> bytes:
    """Return the i-th 32-byte ABI word (zero-padded if out-of-range)."""
    start = 32 * i
    end = start + 32
    return data[start:end] if start < len(data) else b"\x00" * 32


def _signed(v: int, typ: str) -> int:
    bits = int(typ[3:]) if typ != "int" else 256
    # ABI words are sign-extended to 256 bits
    v &= (1 << bits) - 1
    if v >= 2 ** (bits - 1):
        v -= 2**bits
    return v


def parse_topic_field(topic_hex: str, spec: TopicFieldSpec) -> Any:
    """Parse one indexed topic according to the declared type."""
    t = spec.type
    h = topic_hex.lower()
    if t == "address":
        return "0x" + h[-40:]
    if t.startswith("uint"):
        return int(h, 16)
    if t.startswith("int"):
        return _signed(int(h, 16), t)
    return h


def parse_data_word(word: bytes, typ: str) -> Any:
    """Parse one ABI word from data according to the declared type."""
    if typ == "address":
        return "0x" + word[-20:].hex()
    if typ.startswith("uint"):
        return int.from_bytes(word, "big", signed=False)
    if typ.startswith("int"):
        return _signed(int.from_bytes(word, "big", signed=False), typ)
    if typ == "bool":
        return int.from_bytes(word, "big") != 0
    return "0x" + word.hex()


def hex_to_bytes(data_hex: str) -> bytes:
    h = data_hex[2:] if data_hex.startswith(("0x", "0X")) else data_hex
    return bytes.fromhex(h)


# ---------- main decoder ----------


def _spec_for(topics: Sequence[str], registry: EventRegistry) -> EventSpec | None:
    if not topics:
        return None
    return registry.get(topics[0].lower())


def decode_log(log: EventLog, registry: EventRegistry) -> DecodedLog | None:
    """Decode `log` or return None when it is unknown to `registry` or truncated."""
    spec = _spec_for(log.topics, registry)
    if spec is None:
        return None

    values: dict[str, Any] = {}
    for tf in spec.topic_fields:
        if tf.index >= len(log.topics):
            return None
        values[tf.name] = parse_topic_field(log.topics[tf.index], tf)

    data = hex_to_bytes(log.data_hex)
    if len(data) < 32 * spec.min_data_words:
        return None
    for df in spec.data_fields:
        values[df.name] = parse_data_word(word_at(data, df.word_index), df.type)

    return DecodedLog(name=spec.name, values=values, log=log)
