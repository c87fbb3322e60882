"""Tests for codec primitives."""

import pytest

from webjose.core.codec import (
    b64_decode,
    b64_encode,
    b64url_decode,
    b64url_encode,
    bytes_to_int,
    concat_kdf,
    int_to_bytes,
    json_dumps,
    json_loads,
    split_compact,
)
from webjose.core.errors import ValidationError


class TestBase64Url:
    """Tests for unpadded base64url."""

    def test_encode_strips_padding(self):
        """Test that encoded values carry no '=' padding."""
        assert b64url_encode(b"\xfb\xff") == "-_8"
        assert b64url_encode(b"") == ""

    def test_decode_unpadded(self):
        """Test decoding values of every remainder length."""
        for data in (b"a", b"ab", b"abc", b"abcd"):
            assert b64url_decode(b64url_encode(data)) == data

    def test_decode_rejects_padding(self):
        """Test that padded input is rejected."""
        with pytest.raises(ValidationError):
            b64url_decode("YQ==")

    def test_decode_rejects_standard_alphabet(self):
        """Test that '+' and '/' are not accepted."""
        with pytest.raises(ValidationError):
            b64url_decode("+/8")

    def test_decode_rejects_impossible_length(self):
        """Test that a single trailing character is rejected."""
        with pytest.raises(ValidationError):
            b64url_decode("abcde")

    def test_decode_rejects_non_string(self):
        """Test that decoding requires a string."""
        with pytest.raises(ValidationError):
            b64url_decode(None)


class TestBase64:
    """Tests for standard base64 used by x5c."""

    def test_round_trip_keeps_padding(self):
        """Test that standard base64 keeps its padding."""
        assert b64_encode(b"a") == "YQ=="
        assert b64_decode("YQ==") == b"a"

    def test_decode_ignores_whitespace(self):
        """Test that wrapped PEM-style lines decode."""
        assert b64_decode("YW\n Jj\n") == b"abc"

    def test_decode_rejects_garbage(self):
        """Test that invalid base64 is rejected."""
        with pytest.raises(ValidationError):
            b64_decode("not*base64")


class TestIntegers:
    """Tests for unsigned big-endian integers."""

    def test_minimal_encoding(self):
        """Test that integers encode without leading zeros."""
        assert int_to_bytes(65537) == b"\x01\x00\x01"
        assert int_to_bytes(0) == b"\x00"

    def test_fixed_width_encoding(self):
        """Test left padding to a fixed width, as EC coordinates require."""
        assert int_to_bytes(1, 4) == b"\x00\x00\x00\x01"

    def test_fixed_width_overflow(self):
        """Test that a value too wide for the requested length is rejected."""
        with pytest.raises(ValidationError):
            int_to_bytes(70000, 2)

    def test_negative_rejected(self):
        """Test that negative integers cannot be encoded."""
        with pytest.raises(ValidationError):
            int_to_bytes(-1)

    def test_decode(self):
        """Test that bytes decode as an unsigned big-endian integer."""
        assert bytes_to_int(b"\x00\x01\x00\x01") == 65537


class TestCompactSegments:
    """Tests for compact serialization splitting."""

    def test_split(self):
        """Test that a compact string splits into its segments."""
        assert split_compact("a.b.c", 3) == ["a", "b", "c"]

    def test_split_keeps_empty_segments(self):
        """Test that an empty encrypted key segment survives."""
        assert split_compact("a..c.d.e", 5) == ["a", "", "c", "d", "e"]

    def test_wrong_count(self):
        """Test that an unexpected number of segments is rejected."""
        with pytest.raises(ValidationError):
            split_compact("a.b", 3)


class TestConcatKdf:
    """Tests for the Concat KDF."""

    def test_output_length(self):
        """Test that the requested number of bits is produced."""
        assert len(concat_kdf(b"\x01" * 32, 128, "A128GCM")) == 16
        assert len(concat_kdf(b"\x01" * 32, 512, "A256CBC-HS512")) == 64

    def test_algorithm_id_separates_keys(self):
        """Test that different algorithm IDs derive different keys."""
        secret = b"\x02" * 32
        assert concat_kdf(secret, 128, "A128GCM") != concat_kdf(secret, 128, "ECDH-ES+A128KW")

    def test_party_info_separates_keys(self):
        """Test that apu and apv are bound into the derived key."""
        secret = b"\x03" * 32
        base = concat_kdf(secret, 256, "A256GCM")
        assert concat_kdf(secret, 256, "A256GCM", apu=b"Alice") != base
        assert concat_kdf(secret, 256, "A256GCM", apv=b"Bob") != base
        # Length prefixes keep the split between apu and apv unambiguous
        assert concat_kdf(secret, 256, "A256GCM", b"ab", b"c") != concat_kdf(secret, 256, "A256GCM", b"a", b"bc")


class TestJson:
    """Tests for compact JSON handling."""

    def test_dumps_compact_and_ordered(self):
        """Test that JSON output has no whitespace and keeps insertion order."""
        assert json_dumps({"b": 1, "a": "é"}) == '{"b":1,"a":"é"}'

    def test_loads_requires_object(self):
        """Test that JSON arrays and scalars are rejected."""
        with pytest.raises(ValidationError):
            json_loads("[1, 2]")

    def test_loads_invalid(self):
        """Test that malformed JSON raises a validation error."""
        with pytest.raises(ValidationError):
            json_loads(b"{not json")
