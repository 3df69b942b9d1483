"""Tests for token encoding and decoding."""

import base64

import pytest
from pydantic import SecretStr

from brokersync.core.credentials import decode_secret, decode_token, encode_token
from brokersync.exceptions import DecodeError


class TestEncodeToken:
    """Tests for encode_token."""

    def test_encodes_utf8_bytes(self):
        """Tokens are stored as their UTF-8 bytes."""
        assert encode_token("abc") == b"abc"

    def test_empty_token_encodes_to_none(self):
        """Empty or missing tokens store nothing."""
        assert encode_token("") is None
        assert encode_token(None) is None

    def test_accepts_secret_str(self):
        """SecretStr values are unwrapped before encoding."""
        assert encode_token(SecretStr("hidden")) == b"hidden"


class TestDecodeToken:
    """Tests for decode_token."""

    @pytest.mark.parametrize(
        "token",
        ["trading212_token_with_specials+/=", "ya29.a0AfH6SMB", "ünïcødé-tøken"],
    )
    def test_round_trip(self, token):
        """Decoding an encoded token returns the original."""
        assert decode_token(encode_token(token)) == token

    def test_decodes_memoryview(self):
        """Drivers may hand back memoryview for binary columns."""
        assert decode_token(memoryview(b"token-value")) == "token-value"

    def test_decodes_legacy_hex(self):
        """Postgres bytea hex strings are decoded."""
        assert decode_token("\\x" + b"legacy-token".hex()) == "legacy-token"

    def test_odd_length_hex_raises(self):
        """A truncated hex payload is corrupt."""
        with pytest.raises(DecodeError):
            decode_token("\\x616")

    def test_invalid_hex_digits_raise(self):
        """Non-hex characters after the prefix are corrupt."""
        with pytest.raises(DecodeError):
            decode_token("\\xzz")

    def test_decodes_base64_string(self):
        """Base64 strings are decoded."""
        encoded = base64.b64encode(b"b64-token").decode()
        assert decode_token(encoded) == "b64-token"

    def test_plain_string_returned_trimmed(self):
        """Strings that are not base64 are returned as they were stored."""
        assert decode_token("  not base64!  ") == "not base64!"

    def test_invalid_utf8_bytes_raise(self):
        """Binary payloads must be UTF-8."""
        with pytest.raises(DecodeError):
            decode_token(b"\xff\xfe\xfd")

    def test_empty_values_decode_to_none(self):
        """Nothing stored means no token."""
        assert decode_token(None) is None
        assert decode_token(b"") is None
        assert decode_token("   ") is None


class TestDecodeSecret:
    """Tests for decode_secret."""

    def test_wraps_in_secret_str(self):
        """Plaintext is hidden from repr."""
        secret = decode_secret(b"super-secret")
        assert isinstance(secret, SecretStr)
        assert secret.get_secret_value() == "super-secret"
        assert "super-secret" not in repr(secret)

    def test_none_when_empty(self):
        assert decode_secret(None) is None
