"""Build event registries from Solidity event signatures.

Example input:
  "Collect(uint256 indexed tokenId, address recipient, uint256 amount0, uint256 amount1)"

topic0 is keccak256 over the canonical type list; indexed parameters map to
topics 1..n, the rest to consecutive 32-byte data words.
"""

from __future__ import annotations

from eth_utils import keccak

from define.decoding.specs import DataFieldSpec, EventRegistry, EventSpec, TopicFieldSpec


def _split_params(params_str: str) -> list[str]:
    """Split the parameter list by commas while respecting nested tuple types."""
    items: list[str] = []
    depth = 0
    buf: list[str] = []
    for ch in params_str:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        if ch == "," and depth == 0:
            items.append("".join(buf).strip())
            buf = []
        else:
            buf.append(ch)
    if buf:
        items.append("".join(buf).strip())
    return [i for i in items if i]


def _parse_param(p: str, fallback_name: str) -> tuple[str, str, bool]:
    """Parse one parameter fragment into (name, abi_type, indexed)."""
    tokens = p.split()
    indexed = "indexed" in tokens
    tokens = [t for t in tokens if t != "indexed"]
    if not tokens:
        raise ValueError(f"Empty event parameter: {p!r}")
    if len(tokens) == 1:
        return fallback_name, tokens[0], indexed
    return tokens[-1], " ".join(tokens[:-1]), indexed


def topic0_for(canonical_signature: str) -> str:
    """0x-prefixed keccak256 of a canonical signature such as `Transfer(address,address,uint256)`."""
    return "0x" + keccak(text=canonical_signature).hex()


def event_spec_from_signature(signature: str) -> EventSpec:
    sig = signature.strip()
    open_paren = sig.find("(")
    close_paren = sig.rfind(")")
    if open_paren == -1 or close_paren == -1 or close_paren < open_paren:
        raise ValueError(f"Invalid event signature: {signature}")
    name = sig[:open_paren].strip()

    topic_fields: list[TopicFieldSpec] = []
    data_fields: list[DataFieldSpec] = []
    types: list[str] = []
    for i, part in enumerate(_split_params(sig[open_paren + 1 : close_paren])):
        field_name, abi_type, indexed = _parse_param(part, fallback_name=f"arg{i}")
        types.append(abi_type)
        if indexed:
            topic_fields.append(TopicFieldSpec(field_name, len(topic_fields) + 1, abi_type))
        else:
            data_fields.append(DataFieldSpec(field_name, len(data_fields), abi_type))

    return EventSpec(
        topic0=topic0_for(f"{name}({','.join(types)})"),
        name=name,
        topic_fields=topic_fields,
        data_fields=data_fields,
    )


def make_registry(signatures: str | list[str]) -> EventRegistry:
    """Create a registry from one or multiple event signatures."""
    sig_list = [signatures] if isinstance(signatures, str) else signatures
    reg: EventRegistry = {}
    for signature in sig_list:
        spec = event_spec_from_signature(signature)
        reg[spec.topic0.lower()] = spec
    return reg
