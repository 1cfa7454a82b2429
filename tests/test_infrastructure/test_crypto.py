"""Tests for session key agreement and content encryption."""

from __future__ import annotations

import pytest
from web3 import Web3

from marketplace_indexer.domain.exceptions import DecryptionError
from marketplace_indexer.infrastructure.crypto import (
    NONCE_LENGTH,
    SessionIdentity,
    address_from_public_key,
    decrypt_content,
    derive_session_key,
    encrypt_content,
    unwrap_session_key,
    wrap_session_key,
)

KEY = b"\x11" * 32


class TestSessionIdentity:
    def test_address_matches_known_private_key(self) -> None:
        # Private key 1 is the generator point.
        identity = SessionIdentity.from_secret((1).to_bytes(32, "big"))
        assert identity.address == "0x7E5F4552091A69125d5DfCb7b8C2659029395Bdf"

    def test_compressed_public_key(self, creator_identity) -> None:
        assert len(creator_identity.public_key) == 33
        assert creator_identity.public_key[0] in (2, 3)
        assert address_from_public_key(creator_identity.public_key) == creator_identity.address
        assert Web3.is_checksum_address(creator_identity.address)

    def test_generate_is_random(self) -> None:
        assert SessionIdentity.generate().address != SessionIdentity.generate().address


class TestSessionKey:
    def test_both_sides_derive_the_same_key(self, creator_identity, worker_identity) -> None:
        mine = derive_session_key(creator_identity, worker_identity.public_key, 7)
        theirs = derive_session_key(worker_identity, creator_identity.public_key, 7)
        assert mine == theirs
        assert len(mine) == 32

    def test_key_is_bound_to_job(self, creator_identity, worker_identity) -> None:
        first = derive_session_key(creator_identity, worker_identity.public_key, 1)
        second = derive_session_key(creator_identity, worker_identity.public_key, 2)
        assert first != second

    def test_key_layout(self, creator_identity, worker_identity) -> None:
        shared = creator_identity.shared_secret(worker_identity.public_key)
        expected = bytes(Web3.keccak(shared + (2**255).to_bytes(32, "big")))
        assert derive_session_key(creator_identity, worker_identity.public_key, 2**255) == expected

    def test_invalid_point(self, creator_identity) -> None:
        with pytest.raises(ValueError):
            derive_session_key(creator_identity, b"\x02" + b"\xff" * 32, 1)


class TestContentEncryption:
    def test_round_trip(self) -> None:
        blob = encrypt_content(b"brief", KEY)
        assert len(blob) == NONCE_LENGTH + len(b"brief") + 16
        assert decrypt_content(blob, KEY) == b"brief"

    def test_fixed_nonce_is_deterministic(self) -> None:
        nonce = b"\x00" * NONCE_LENGTH
        assert encrypt_content(b"x", KEY, nonce) == encrypt_content(b"x", KEY, nonce)
        assert encrypt_content(b"x", KEY)[:NONCE_LENGTH] != encrypt_content(b"x", KEY)[:NONCE_LENGTH]

    @pytest.mark.parametrize(
        "mutate",
        [
            lambda blob: blob[:-1] + bytes([blob[-1] ^ 1]),
            lambda blob: blob[:NONCE_LENGTH],
            lambda blob: b"",
        ],
        ids=["flipped-tag", "truncated", "empty"],
    )
    def test_tampered_blob(self, mutate) -> None:
        with pytest.raises(DecryptionError):
            decrypt_content(mutate(encrypt_content(b"brief", KEY)), KEY)

    def test_wrong_key(self) -> None:
        with pytest.raises(DecryptionError) as exc_info:
            decrypt_content(encrypt_content(b"brief", KEY), b"\x22" * 32)
        assert exc_info.value.code == "DECRYPTION_FAILED"


class TestKeyWrap:
    def test_wrap_round_trip(self) -> None:
        wrapped = wrap_session_key(KEY, b"\x33" * 32)
        assert len(wrapped) == 40
        assert unwrap_session_key(wrapped, b"\x33" * 32) == KEY

    def test_unwrap_with_wrong_key(self) -> None:
        wrapped = wrap_session_key(KEY, b"\x33" * 32)
        with pytest.raises(DecryptionError):
            unwrap_session_key(wrapped, b"\x44" * 32)

    def test_unwrap_malformed(self) -> None:
        with pytest.raises(DecryptionError):
            unwrap_session_key(b"\x00" * 7, b"\x33" * 32)
