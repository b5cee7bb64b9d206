"""
Wire codec between native values and DynamoDB attribute values.

DynamoDB represents every attribute as a single-key map whose key is the
type tag, e.g. ``{"S": "abc"}`` or ``{"N": "42"}``. This module converts
native Python values to that format and back.

Invariants:
    - decode(encode(x)) == x for every representable x except ""
    - None is stored as the reserved string "null"
    - The empty string and empty arrays are dropped, never encoded
    - Numbers travel as decimal strings

How to change safely:
    - Every WireType handled in encode() must be handled in decode()
    - Never change NULL_SENTINEL; existing tables depend on it
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Dict, Optional

from .errors import DataFormatError

# Reserved wire string standing in for null
NULL_SENTINEL = "null"

WireValue = Dict[str, Any]


class WireType(Enum):
    """Attribute type tags of the wire format."""

    STRING = "S"
    NUMBER = "N"
    BOOLEAN = "BOOL"
    MAP = "M"
    LIST = "L"
    STRING_SET = "SS"
    NUMBER_SET = "NS"

    @classmethod
    def of(cls, wire_value: WireValue) -> WireType:
        """Get the type tag of a wire value.

        Raises:
            DataFormatError: If the value is not a single-tag map
        """
        if not isinstance(wire_value, dict) or len(wire_value) != 1:
            raise DataFormatError(f"Malformed wire value: {wire_value!r}")
        tag = next(iter(wire_value))
        try:
            return cls(tag)
        except ValueError:
            raise DataFormatError(f"Unsupported wire type '{tag}'")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _format_number(value: Any) -> str:
    if isinstance(value, float) and not math.isfinite(value):
        raise DataFormatError(f"Cannot store non-finite number {value!r}")
    return str(value)


def _parse_number(text: str) -> int | float:
    if any(c in text for c in ".eE"):
        return float(text)
    return int(text)


def encode(value: Any) -> Optional[WireValue]:
    """Encode a native value as a wire value.

    Args:
        value: str, bool, int, float, list, dict or None

    Returns:
        The wire value, or None when the value is dropped
        (empty string, empty array)

    Raises:
        DataFormatError: If the value has no wire representation
    """
    if value is None:
        return {WireType.STRING.value: NULL_SENTINEL}

    if isinstance(value, str):
        if value == "":
            return None
        return {WireType.STRING.value: value}

    if isinstance(value, bool):
        return {WireType.BOOLEAN.value: value}

    if _is_number(value):
        return {WireType.NUMBER.value: _format_number(value)}

    if isinstance(value, (list, tuple)):
        if len(value) == 0:
            return None
        if all(isinstance(v, str) for v in value) and "" not in value:
            if len(set(value)) == len(value):
                return {WireType.STRING_SET.value: list(value)}
        elif all(_is_number(v) for v in value):
            numbers = [_format_number(v) for v in value]
            if len(set(numbers)) == len(numbers):
                return {WireType.NUMBER_SET.value: numbers}
        # Mixed, duplicated or nested content
        encoded = []
        for item in value:
            wire_item = encode(item)
            if wire_item is None:
                raise DataFormatError(f"Cannot store empty value inside array {value!r}")
            encoded.append(wire_item)
        return {WireType.LIST.value: encoded}

    if isinstance(value, dict):
        return {WireType.MAP.value: encode_item(value)}

    raise DataFormatError(
        f"Cannot encode value of type {type(value).__name__}",
        value=value,
    )


def decode(wire_value: WireValue) -> Any:
    """Decode a wire value into a native value.

    Args:
        wire_value: Single-tag attribute value map

    Returns:
        The native value; the reserved string "null" decodes to None
    """
    if "NULL" in wire_value:
        # Written by other clients
        return None

    wire_type = WireType.of(wire_value)
    raw = wire_value[wire_type.value]

    if wire_type == WireType.STRING:
        return None if raw == NULL_SENTINEL else raw
    elif wire_type == WireType.NUMBER:
        return _parse_number(raw)
    elif wire_type == WireType.BOOLEAN:
        return bool(raw)
    elif wire_type == WireType.MAP:
        return decode_item(raw)
    elif wire_type == WireType.LIST:
        return [decode(v) for v in raw]
    elif wire_type == WireType.STRING_SET:
        return list(raw)
    elif wire_type == WireType.NUMBER_SET:
        return [_parse_number(v) for v in raw]

    raise DataFormatError(f"Unsupported wire type '{wire_type.value}'")


def encode_item(document: Dict[str, Any]) -> Dict[str, WireValue]:
    """Encode a document as a wire item, skipping dropped values."""
    item: Dict[str, WireValue] = {}
    for key, value in document.items():
        wire_value = encode(value)
        if wire_value is not None:
            item[key] = wire_value
    return item


def decode_item(item: Dict[str, WireValue]) -> Dict[str, Any]:
    """Decode a wire item into a native document."""
    return {key: decode(value) for key, value in item.items()}
