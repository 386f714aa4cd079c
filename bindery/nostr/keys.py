"""secp256k1 key helpers for x-only (BIP-340) public keys."""

from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat


def load_private_key(secret: bytes) -> ec.EllipticCurvePrivateKey:
    """Load a 32-byte secret as a secp256k1 private key.

    Raises:
        ValueError: If the secret is not 32 bytes or outside the curve order.
    """
    if len(secret) != 32:
        raise ValueError("secret key must be 32 bytes")
    return ec.derive_private_key(int.from_bytes(secret, "big"), ec.SECP256K1())


def public_key_hex(secret: bytes) -> str:
    """Return the x-only public key (64 hex chars) for a 32-byte secret."""
    point = load_private_key(secret).public_key().public_bytes(
        Encoding.X962, PublicFormat.CompressedPoint
    )
    return point[1:].hex()


def lift_x(pubkey_hex: str) -> ec.EllipticCurvePublicKey:
    """Load an x-only public key, choosing the point with even y."""
    x = bytes.fromhex(pubkey_hex)
    if len(x) != 32:
        raise ValueError("public key must be 32 bytes")
    return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), b"\x02" + x)
