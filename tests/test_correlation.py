"""
Tests for correlation ids shared with the device.
"""

import pytest

from open311_smssync.correlation import decode, encode


def test_encode_joins_id_and_recipient():
    assert encode("5a1b", "+255700") == "5a1b:+255700"


@pytest.mark.parametrize("recipient", ["+255700", "255700", "John Doe", "+1:ext"])
def test_decode_returns_message_id(recipient):
    assert decode(encode("5a1b", recipient)) == "5a1b"


@pytest.mark.parametrize("uuid", [None, "", "no-separator", ":+255700", 42, ["a:b"]])
def test_decode_malformed_returns_none(uuid):
    assert decode(uuid) is None


def test_decode_keeps_everything_before_first_separator():
    assert decode(" abc:x") == " abc"
    assert decode("abc:+1:ext") == "abc"
