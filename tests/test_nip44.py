"""Tests for NIP-44 v2 encryption."""

import base64

import pytest

from bindery.nostr import nip44
from bindery.nostr.keys import public_key_hex

SEC1 = bytes.fromhex("00" * 31 + "01")
SEC2 = bytes.fromhex("00" * 31 + "02")


@pytest.fixture
def conversation_key():
    return nip44.get_conversation_key(SEC1, public_key_hex(SEC2))


class TestConversationKey:
    """Tests for ECDH conversation keys."""

    def test_known_vector(self, conversation_key):
        assert conversation_key.hex() == (
            "c41c775356fd92eadc63ff5a0dc1da211b268cbea22316767095b2871ea1412d"
        )

    def test_symmetric(self, conversation_key):
        """Test both parties derive the same key."""
        assert nip44.get_conversation_key(SEC2, public_key_hex(SEC1)) == conversation_key

    def test_public_key_of_one(self):
        assert public_key_hex(SEC1) == (
            "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
        )


class TestPadding:
    """Tests for the padding scheme."""

    @pytest.mark.parametrize(
        "unpadded,padded",
        [
            (1, 32), (16, 32), (32, 32), (33, 64), (37, 64), (64, 64), (65, 96),
            (100, 128), (200, 224), (250, 256), (320, 320), (383, 384),
            (400, 448), (500, 512), (515, 640), (700, 768), (900, 1024),
            (65535, 65536),
        ],
    )
    def test_calc_padded_len(self, unpadded, padded):
        assert nip44.calc_padded_len(unpadded) == padded


class TestEncryptDecrypt:
    """Tests for encrypt/decrypt."""

    def test_known_vector(self, conversation_key):
        nonce = bytes.fromhex("00" * 31 + "01")
        payload = nip44.encrypt("a", conversation_key, nonce=nonce)
        assert payload == (
            "AgAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAABee0G5VSK0/9YypIObAtDKfYEAjD35uVkHyB0F4DwrcNaCXlCWZKaArsGrY6M9wnuTMxWfp1RTN9Xga8no+kF5Vsb"
        )
        assert nip44.decrypt(payload, conversation_key) == "a"

    def test_unicode(self, conversation_key):
        text = "Chapter one: naïve café 🍕"
        assert nip44.decrypt(nip44.encrypt(text, conversation_key), conversation_key) == text

    def test_random_nonce(self, conversation_key):
        assert nip44.encrypt("x", conversation_key) != nip44.encrypt("x", conversation_key)

    def test_empty_plaintext(self, conversation_key):
        with pytest.raises(nip44.Nip44Error, match=nip44.INVALID_PLAINTEXT_SIZE):
            nip44.encrypt("", conversation_key)

    def test_too_large_plaintext(self, conversation_key):
        with pytest.raises(nip44.Nip44Error, match=nip44.INVALID_PLAINTEXT_SIZE):
            nip44.encrypt("x" * 65536, conversation_key)

    def test_max_plaintext(self, conversation_key):
        text = "x" * 65535
        assert nip44.decrypt(nip44.encrypt(text, conversation_key), conversation_key) == text

    def test_wrong_key(self, conversation_key):
        payload = nip44.encrypt("secret", conversation_key)
        with pytest.raises(nip44.Nip44Error, match="invalid MAC"):
            nip44.decrypt(payload, bytes(32))

    def test_tampered_ciphertext(self, conversation_key):
        raw = bytearray(base64.b64decode(nip44.encrypt("secret", conversation_key)))
        raw[40] ^= 0x01
        with pytest.raises(nip44.Nip44Error, match="invalid MAC"):
            nip44.decrypt(base64.b64encode(bytes(raw)).decode(), conversation_key)

    def test_unknown_version(self, conversation_key):
        raw = bytearray(base64.b64decode(nip44.encrypt("secret", conversation_key)))
        raw[0] = 1
        with pytest.raises(nip44.Nip44Error, match="unknown encryption version"):
            nip44.decrypt(base64.b64encode(bytes(raw)).decode(), conversation_key)

    def test_hash_prefixed_payload(self, conversation_key):
        with pytest.raises(nip44.Nip44Error):
            nip44.decrypt("#" + "A" * 200, conversation_key)

    def test_short_payload(self, conversation_key):
        with pytest.raises(nip44.Nip44Error, match="invalid payload size"):
            nip44.decrypt("AgAA", conversation_key)
