"""Tests for topic resolution and log decoding."""

from __future__ import annotations

import pytest
from eth_abi import encode as abi_encode
from web3 import Web3

from marketplace_indexer.codec.encoders import encode_log
from marketplace_indexer.codec.logs import (
    EVENT_ABIS,
    ContractDomain,
    LogEventKind,
    decode_log,
    event_abi,
    resolve_topic,
)
from marketplace_indexer.domain.exceptions import DecodeError

USER = "0x" + "33" * 20


class TestRegistry:
    def test_every_kind_has_an_abi(self) -> None:
        assert {abi.kind for abi in EVENT_ABIS} == set(LogEventKind)

    def test_topic_is_keccak_of_signature(self) -> None:
        abi = event_abi(LogEventKind.PAUSED)
        assert abi.signature == "Paused(address)"
        assert abi.topic == "0x" + Web3.keccak(text="Paused(address)").hex().removeprefix("0x")

    def test_job_event_signature(self) -> None:
        assert (
            event_abi(LogEventKind.JOB_EVENT).signature
            == "JobEvent(uint256,(uint8,bytes,bytes,uint32))"
        )

    def test_resolve_is_scoped_to_domain(self) -> None:
        topic = event_abi(LogEventKind.USER_REGISTERED).topic
        assert resolve_topic(ContractDomain.MARKETPLACE_DATA, topic) is LogEventKind.USER_REGISTERED
        assert resolve_topic(ContractDomain.MARKETPLACE, topic) is None

    def test_resolve_ignores_case(self) -> None:
        topic = event_abi(LogEventKind.UNPAUSED).topic.upper().replace("0X", "0x")
        assert resolve_topic(ContractDomain.MARKETPLACE, topic) is LogEventKind.UNPAUSED

    def test_unknown_topic(self) -> None:
        assert resolve_topic(ContractDomain.MARKETPLACE, "0x" + "00" * 32) is None


class TestDecodeLog:
    def test_indexed_and_plain_params(self) -> None:
        topics, data = encode_log(
            LogEventKind.USER_REGISTERED,
            {"addr": USER, "pubkey": b"\x02" * 33, "name": "ann", "bio": "hi", "avatar": ""},
        )
        decoded = decode_log(LogEventKind.USER_REGISTERED, topics, data)

        assert decoded.args["addr"] == USER
        assert decoded.args["pubkey"] == b"\x02" * 33
        assert decoded.args["name"] == "ann"

    def test_only_indexed_params(self) -> None:
        old, new = "0x" + "01" * 20, "0x" + "02" * 20
        topics, data = encode_log(
            LogEventKind.OWNERSHIP_TRANSFERRED, {"previousOwner": old, "newOwner": new}
        )
        assert data == b""
        decoded = decode_log(LogEventKind.OWNERSHIP_TRANSFERRED, topics, data)
        assert decoded.args == {"previousOwner": old, "newOwner": new}

    def test_job_event_tuple(self) -> None:
        topics, data = encode_log(
            LogEventKind.JOB_EVENT,
            {"jobId": 2**70, "eventData": (10, bytes.fromhex(USER[2:]), b"\x04ok", 1234)},
        )
        decoded = decode_log(LogEventKind.JOB_EVENT, topics, data)
        assert decoded.args["jobId"] == 2**70
        assert decoded.args["eventData"] == (10, bytes.fromhex(USER[2:]), b"\x04ok", 1234)

    def test_missing_topics(self) -> None:
        topic = event_abi(LogEventKind.OWNERSHIP_TRANSFERRED).topic
        with pytest.raises(DecodeError):
            decode_log(LogEventKind.OWNERSHIP_TRANSFERRED, [topic], b"")

    def test_truncated_data(self) -> None:
        topics, data = encode_log(LogEventKind.TREASURY_ADDRESS_CHANGED, {"treasuryAddress": USER})
        with pytest.raises(DecodeError):
            decode_log(LogEventKind.TREASURY_ADDRESS_CHANGED, topics, data[:10])

    def test_fee_is_uint16(self) -> None:
        topic = event_abi(LogEventKind.ESCROW_FEE_CHANGED).topic
        data = abi_encode(["uint16"], [250])
        decoded = decode_log(LogEventKind.ESCROW_FEE_CHANGED, [topic], data)
        assert decoded.args["unicrowMarketplaceFee"] == 250
