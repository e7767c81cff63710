"""Identifier derivation for generated declarations."""

import re

_WORD_SPLIT = re.compile(r"[^0-9A-Za-z]+")


def to_camel_case(name: str) -> str:
    """Convert a type id such as `packet_login.params.1` to `PacketLoginParams1`."""
    words = [w for w in _WORD_SPLIT.split(name) if w]
    result = "".join(w[0].upper() + w[1:] for w in words)
    if not result:
        return "Anonymous"
    if result[0].isdigit():
        return "T" + result
    return result


def to_identifier(name: str) -> str:
    """Make a field or variant name usable as an identifier."""
    result = re.sub(r"[^0-9A-Za-z_]", "_", name)
    if not result:
        return "_"
    if result[0].isdigit():
        return "_" + result
    return result


def unique(name: str, taken: set[str]) -> str:
    """Return `name`, or `name` with the smallest numeric suffix not in `taken`."""
    if name not in taken:
        return name
    suffix = 2
    while f"{name}{suffix}" in taken:
        suffix += 1
    return f"{name}{suffix}"
