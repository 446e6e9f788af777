"""
Unit tests for QR payload canonicalization.
"""

import hashlib
import json

import pytest

from propqr.payload import (
    PAYLOAD_KEYS,
    ResourceLink,
    canonical_payload,
    decode_payload,
    encode_link,
    payload_hash,
)
from propqr.services.exceptions import ValidationError


@pytest.mark.unit
class TestCanonicalPayload:

    def test_fixed_key_order_and_compact(self):
        payload = canonical_payload("p1", "https://qr.example.com/scan/p1")
        assert payload == '{"type":"resource-link","subject_id":"p1","scan_url":"https://qr.example.com/scan/p1"}'
        assert tuple(json.loads(payload).keys()) == PAYLOAD_KEYS

    def test_round_trip_is_byte_identical(self):
        original = canonical_payload("listing_42", "https://qr.example.com/scan/listing_42")
        assert encode_link(decode_payload(original)) == original
        assert encode_link(decode_payload(original.encode("utf-8"))) == original

    def test_round_trip_normalizes_key_order(self):
        shuffled = json.dumps({"scan_url": "https://x/scan/p9", "subject_id": "p9", "type": "resource-link"}, indent=2)
        assert encode_link(decode_payload(shuffled)) == canonical_payload("p9", "https://x/scan/p9")

    def test_non_ascii_is_kept_verbatim(self):
        payload = canonical_payload("p1", "https://qr.example.com/scan/매물")
        assert "매물" in payload
        assert encode_link(decode_payload(payload)) == payload

    def test_hash_is_sha256_of_payload(self):
        payload = canonical_payload("p1", "https://x/scan/p1")
        assert payload_hash(payload) == hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def test_encode_link_defaults_type(self):
        assert json.loads(encode_link(ResourceLink(subject_id="a", scan_url="b")))["type"] == "resource-link"


@pytest.mark.unit
class TestDecodePayloadErrors:

    @pytest.mark.parametrize("raw", [
        "not json",
        "[]",
        '{"type":"resource-link","subject_id":"p1"}',
        '{"type":"resource-link","subject_id":"p1","scan_url":"u","extra":1}',
        '{"type":"other","subject_id":"p1","scan_url":"u"}',
        '{"type":"resource-link","subject_id":1,"scan_url":"u"}',
    ])
    def test_invalid_payloads_rejected(self, raw):
        with pytest.raises(ValidationError) as excinfo:
            decode_payload(raw)
        assert excinfo.value.error_code == "INVALID_PAYLOAD"
