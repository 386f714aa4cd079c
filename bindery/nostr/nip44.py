"""NIP-44 version 2 payload encryption.

ChaCha20 with HMAC-SHA256 (encrypt-then-MAC), keys derived with HKDF from
an ECDH conversation key. Plaintext is length-prefixed and padded to hide
its exact size.
"""

import base64
import binascii
import os
import struct

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from .keys import lift_x, load_private_key

VERSION = 2
SALT = b"nip44-v2"
MIN_PLAINTEXT_SIZE = 1
MAX_PLAINTEXT_SIZE = 65535

INVALID_PLAINTEXT_SIZE = "invalid plaintext size"


class Nip44Error(ValueError):
    """Raised for any encryption or decryption failure."""


def get_conversation_key(private_key: bytes, public_key: str) -> bytes:
    """Derive the 32-byte conversation key shared by two keypairs."""
    shared_x = load_private_key(private_key).exchange(ec.ECDH(), lift_x(public_key))
    h = hmac.HMAC(SALT, hashes.SHA256())
    h.update(shared_x)
    return h.finalize()


def calc_padded_len(unpadded_len: int) -> int:
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(plaintext: str) -> bytes:
    unpadded = plaintext.encode("utf-8")
    size = len(unpadded)
    if size < MIN_PLAINTEXT_SIZE or size > MAX_PLAINTEXT_SIZE:
        raise Nip44Error(INVALID_PLAINTEXT_SIZE)
    return struct.pack(">H", size) + unpadded + bytes(calc_padded_len(size) - size)


def _unpad(padded: bytes) -> str:
    size = struct.unpack(">H", padded[:2])[0]
    unpadded = padded[2 : 2 + size]
    if (
        size == 0
        or len(unpadded) != size
        or len(padded) != 2 + calc_padded_len(size)
    ):
        raise Nip44Error("invalid padding")
    return unpadded.decode("utf-8")


def _message_keys(conversation_key: bytes, nonce: bytes) -> tuple[bytes, bytes, bytes]:
    if len(conversation_key) != 32:
        raise Nip44Error("invalid conversation key length")
    if len(nonce) != 32:
        raise Nip44Error("invalid nonce length")
    keys = HKDFExpand(algorithm=hashes.SHA256(), length=76, info=nonce).derive(
        conversation_key
    )
    return keys[0:32], keys[32:44], keys[44:76]


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # 4-byte little-endian block counter, starting at 0
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00\x00\x00\x00" + nonce), mode=None)
    return cipher.encryptor().update(data)


def _mac(key: bytes, nonce: bytes, ciphertext: bytes) -> hmac.HMAC:
    h = hmac.HMAC(key, hashes.SHA256())
    h.update(nonce + ciphertext)
    return h


def encrypt(plaintext: str, conversation_key: bytes, nonce: bytes | None = None) -> str:
    """Encrypt plaintext, returning the base64 payload.

    Raises:
        Nip44Error: With INVALID_PLAINTEXT_SIZE when the UTF-8 plaintext is
            empty or longer than 65535 bytes.
    """
    nonce = nonce if nonce is not None else os.urandom(32)
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext))
    mac = _mac(hmac_key, nonce, ciphertext).finalize()
    return base64.b64encode(bytes([VERSION]) + nonce + ciphertext + mac).decode("ascii")


def decrypt(payload: str, conversation_key: bytes) -> str:
    """Decrypt a base64 payload produced by encrypt()."""
    if not payload or payload[0] == "#":
        raise Nip44Error("unknown encryption version")
    if len(payload) < 132 or len(payload) > 87472:
        raise Nip44Error("invalid payload size")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise Nip44Error("invalid base64") from e
    if len(data) < 99 or len(data) > 65603:
        raise Nip44Error("invalid data size")
    if data[0] != VERSION:
        raise Nip44Error(f"unknown encryption version {data[0]}")

    nonce, ciphertext, mac = data[1:33], data[33:-32], data[-32:]
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    try:
        _mac(hmac_key, nonce, ciphertext).verify(mac)
    except InvalidSignature as e:
        raise Nip44Error("invalid MAC") from e

    padded = _chacha20(chacha_key, chacha_nonce, ciphertext)
    try:
        return _unpad(padded)
    except UnicodeDecodeError as e:
        raise Nip44Error("invalid utf-8 plaintext") from e
