"""
Unit tests for the wire codec.

Tests cover:
- Scalar encoding and the null sentinel
- Set vs list selection for arrays
- Dropped values (empty string, empty array)
- Round-trips for nested documents
- Rejection of unsupported values
"""

from decimal import Decimal

import pytest

from dbaas.dynadoc.codec import (
    NULL_SENTINEL,
    WireType,
    decode,
    decode_item,
    encode,
    encode_item,
)
from dbaas.dynadoc.errors import DataFormatError


class TestEncode:
    """Tests for encode()."""

    def test_string(self):
        assert encode("abc") == {"S": "abc"}

    def test_none_uses_sentinel(self):
        """None is stored as the reserved string."""
        assert encode(None) == {"S": NULL_SENTINEL}
        assert NULL_SENTINEL == "null"

    def test_boolean_before_number(self):
        """bool is not treated as an int."""
        assert encode(True) == {"BOOL": True}
        assert encode(False) == {"BOOL": False}

    def test_numbers_are_strings(self):
        assert encode(42) == {"N": "42"}
        assert encode(1.5) == {"N": "1.5"}

    def test_non_finite_number_rejected(self):
        with pytest.raises(DataFormatError):
            encode(float("nan"))
        with pytest.raises(DataFormatError):
            encode(float("inf"))

    def test_empty_string_dropped(self):
        assert encode("") is None

    def test_empty_array_dropped(self):
        assert encode([]) is None

    def test_string_array_is_string_set(self):
        assert encode(["a", "b"]) == {"SS": ["a", "b"]}

    def test_number_array_is_number_set(self):
        assert encode([1, 2.5]) == {"NS": ["1", "2.5"]}

    def test_mixed_array_is_list(self):
        assert encode(["a", 1, True]) == {"L": [{"S": "a"}, {"N": "1"}, {"BOOL": True}]}

    def test_duplicate_strings_fall_back_to_list(self):
        """Sets cannot hold duplicates on the wire."""
        assert encode(["a", "a"]) == {"L": [{"S": "a"}, {"S": "a"}]}

    def test_array_with_empty_string_rejected(self):
        with pytest.raises(DataFormatError):
            encode(["a", ""])

    def test_nested_object_is_map(self):
        assert encode({"a": 1, "b": {"c": "x"}}) == {
            "M": {"a": {"N": "1"}, "b": {"M": {"c": {"S": "x"}}}}
        }

    def test_unsupported_type_rejected(self):
        with pytest.raises(DataFormatError) as exc_info:
            encode(object())
        assert exc_info.value.code == "DATA_FORMAT_ERROR"

    def test_encode_item_skips_dropped_values(self):
        item = encode_item({"_id": "a", "blank": "", "tags": [], "n": 0})
        assert item == {"_id": {"S": "a"}, "n": {"N": "0"}}


class TestDecode:
    """Tests for decode()."""

    def test_sentinel_restores_none(self):
        assert decode({"S": "null"}) is None

    def test_store_null_tag(self):
        assert decode({"NULL": True}) is None

    def test_integer_and_float(self):
        assert decode({"N": "7"}) == 7
        assert isinstance(decode({"N": "7"}), int)
        assert decode({"N": "7.5"}) == 7.5
        assert decode({"N": "1e3"}) == 1000.0

    def test_sets_become_lists(self):
        assert decode({"SS": ["a", "b"]}) == ["a", "b"]
        assert decode({"NS": ["1", "2"]}) == [1, 2]

    def test_unknown_tag_rejected(self):
        with pytest.raises(DataFormatError):
            decode({"X": "1"})

    def test_malformed_value_rejected(self):
        with pytest.raises(DataFormatError):
            decode({"S": "a", "N": "1"})

    def test_wire_type_of(self):
        assert WireType.of({"NS": ["1"]}) == WireType.NUMBER_SET


class TestRoundTrip:
    """decode(encode(x)) == x for representable values."""

    @pytest.mark.parametrize(
        "value",
        [
            "text",
            None,
            True,
            0,
            -12,
            3.75,
            0.1,
            1e-07,
            ["x", "y"],
            [1, 2, 3],
            ["a", 1, None],
            ["a", "a"],
            {"name": "n", "nested": {"flag": False, "list": [{"k": 1}]}},
        ],
    )
    def test_round_trip(self, value):
        assert decode(encode(value)) == value

    def test_document_round_trip(self):
        doc = {"_id": "a", "count": 2, "tags": ["x"], "meta": {"owner": None}}
        assert decode_item(encode_item(doc)) == doc

    def test_decimal_rejected(self):
        """Decimal has no lossless decoding, so it is refused up front."""
        with pytest.raises(DataFormatError):
            encode(Decimal("0.1"))
        with pytest.raises(DataFormatError):
            encode([Decimal("1"), Decimal("2")])

    def test_empty_string_is_lossy(self):
        """The empty string cannot round-trip; it is dropped."""
        assert decode_item(encode_item({"_id": "a", "name": ""})) == {"_id": "a"}
