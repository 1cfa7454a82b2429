"""Session key agreement and content encryption.

Every pair of job participants shares a symmetric session key that both
sides derive independently from their own private key and the other's
registered public key:

    session_key = keccak256(ECDH_x(own_private, counterpart_public) || uint256(job_id))

Content blobs are AES-256-GCM: ``nonce (12 bytes) || ciphertext || tag``.
A dispute reveals the creator/worker session key to the arbitrator by
wrapping it (AES key wrap, RFC 3394) with the initiator/arbitrator key.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.keywrap import InvalidUnwrap, aes_key_unwrap, aes_key_wrap
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from web3 import Web3

from marketplace_indexer.domain.exceptions import DecryptionError

CURVE = ec.SECP256K1()
SESSION_KEY_LENGTH = 32
NONCE_LENGTH = 12
GCM_TAG_LENGTH = 16


def load_public_key(public_key: bytes) -> ec.EllipticCurvePublicKey:
    """Parse a SEC1 point (33-byte compressed or 65-byte uncompressed).

    Raises:
        ValueError: If the bytes are not a point on secp256k1.
    """
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, public_key)


def address_from_public_key(public_key: bytes) -> str:
    """Ethereum address of a secp256k1 public key."""
    point = load_public_key(public_key).public_bytes(
        Encoding.X962, PublicFormat.UncompressedPoint
    )
    return Web3.to_checksum_address(bytes(Web3.keccak(point[1:]))[-20:])


class SessionIdentity:
    """The local participant: a secp256k1 private key and its address.

    Usage:
        me = SessionIdentity.generate()
        key = derive_session_key(me, their_public_key, job_id=7)
    """

    def __init__(self, private_key: ec.EllipticCurvePrivateKey) -> None:
        self._private_key = private_key
        self.public_key = private_key.public_key().public_bytes(
            Encoding.X962, PublicFormat.CompressedPoint
        )
        self.address = address_from_public_key(self.public_key)

    @classmethod
    def generate(cls) -> SessionIdentity:
        return cls(ec.generate_private_key(CURVE))

    @classmethod
    def from_secret(cls, secret: bytes) -> SessionIdentity:
        """Load a 32-byte raw private key."""
        return cls(ec.derive_private_key(int.from_bytes(secret, "big"), CURVE))

    def shared_secret(self, counterpart_public_key: bytes) -> bytes:
        """ECDH x-coordinate with the counterpart (32 bytes)."""
        return self._private_key.exchange(ec.ECDH(), load_public_key(counterpart_public_key))

    def __repr__(self) -> str:
        return f"<SessionIdentity address={self.address}>"


def derive_session_key(
    identity: SessionIdentity,
    counterpart_public_key: bytes,
    job_id: int,
) -> bytes:
    """Derive the pair's session key for one job.

    Both participants arrive at the same key: ECDH is symmetric.
    """
    shared = identity.shared_secret(counterpart_public_key)
    return bytes(Web3.keccak(shared + job_id.to_bytes(32, "big")))


def encrypt_content(plaintext: bytes, key: bytes, nonce: bytes | None = None) -> bytes:
    nonce = nonce if nonce is not None else os.urandom(NONCE_LENGTH)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def decrypt_content(blob: bytes, key: bytes) -> bytes:
    """Decrypt a content blob.

    Raises:
        DecryptionError: If the blob is truncated or was not sealed with ``key``.
    """
    if len(blob) < NONCE_LENGTH + GCM_TAG_LENGTH:
        raise DecryptionError(f"blob is {len(blob)} bytes, too short for AES-GCM")
    try:
        return AESGCM(key).decrypt(blob[:NONCE_LENGTH], blob[NONCE_LENGTH:], None)
    except InvalidTag as err:
        raise DecryptionError("authentication tag mismatch") from err


def wrap_session_key(session_key: bytes, wrapping_key: bytes) -> bytes:
    """Wrap a 32-byte session key; the result is 40 bytes."""
    return aes_key_wrap(wrapping_key, session_key)


def unwrap_session_key(wrapped: bytes, wrapping_key: bytes) -> bytes:
    """Reveal a wrapped session key.

    Raises:
        DecryptionError: If ``wrapping_key`` is not the key it was wrapped with.
    """
    try:
        return aes_key_unwrap(wrapping_key, wrapped)
    except (InvalidUnwrap, ValueError) as err:
        raise DecryptionError("session key does not unwrap") from err
