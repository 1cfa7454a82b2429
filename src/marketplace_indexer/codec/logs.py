"""Log-level decoding for the Marketplace and MarketplaceData contracts.

``topic[0]`` of a log is keccak256 of the canonical event signature. The
registry below is the closed set of events this indexer understands; any
other topic resolves to None and the log is ignored.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from marketplace_indexer.domain.exceptions import DecodeError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


class ContractDomain(enum.StrEnum):
    MARKETPLACE = "marketplace"
    MARKETPLACE_DATA = "marketplace_data"


class LogEventKind(enum.StrEnum):
    """Every on-chain event the ingestor dispatches on."""

    # Marketplace
    INITIALIZED = "Initialized"
    MARKETPLACE_DATA_ADDRESS_CHANGED = "MarketplaceDataAddressChanged"
    TREASURY_ADDRESS_CHANGED = "TreasuryAddressChanged"
    ESCROW_ADDRESSES_CHANGED = "UnicrowAddressesChanged"
    ESCROW_FEE_CHANGED = "UnicrowMarketplaceFeeChanged"
    VERSION_CHANGED = "VersionChanged"
    PAUSED = "Paused"
    UNPAUSED = "Unpaused"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"

    # MarketplaceData
    USER_REGISTERED = "UserRegistered"
    USER_UPDATED = "UserUpdated"
    ARBITRATOR_REGISTERED = "ArbitratorRegistered"
    ARBITRATOR_UPDATED = "ArbitratorUpdated"
    JOB_EVENT = "JobEvent"


@dataclass(frozen=True)
class Param:
    name: str
    abi_type: str
    indexed: bool = False


@dataclass(frozen=True)
class EventAbi:
    """ABI of one event: parameters in declaration order."""

    kind: LogEventKind
    domain: ContractDomain
    params: tuple[Param, ...]

    @property
    def signature(self) -> str:
        return f"{self.kind.value}({','.join(p.abi_type for p in self.params)})"

    @property
    def topic(self) -> str:
        return "0x" + bytes(Web3.keccak(text=self.signature)).hex()


_JOB_EVENT_DATA = "(uint8,bytes,bytes,uint32)"

_M = ContractDomain.MARKETPLACE
_D = ContractDomain.MARKETPLACE_DATA

EVENT_ABIS: tuple[EventAbi, ...] = (
    EventAbi(LogEventKind.INITIALIZED, _M, (Param("version", "uint64"),)),
    EventAbi(
        LogEventKind.MARKETPLACE_DATA_ADDRESS_CHANGED, _M,
        (Param("marketplaceDataAddress", "address"),),
    ),
    EventAbi(LogEventKind.TREASURY_ADDRESS_CHANGED, _M, (Param("treasuryAddress", "address"),)),
    EventAbi(
        LogEventKind.ESCROW_ADDRESSES_CHANGED, _M,
        (
            Param("unicrowAddress", "address"),
            Param("unicrowDisputeAddress", "address"),
            Param("unicrowArbitratorAddress", "address"),
        ),
    ),
    EventAbi(LogEventKind.ESCROW_FEE_CHANGED, _M, (Param("unicrowMarketplaceFee", "uint16"),)),
    EventAbi(LogEventKind.VERSION_CHANGED, _M, (Param("version", "uint256"),)),
    EventAbi(LogEventKind.PAUSED, _M, (Param("account", "address"),)),
    EventAbi(LogEventKind.UNPAUSED, _M, (Param("account", "address"),)),
    EventAbi(
        LogEventKind.OWNERSHIP_TRANSFERRED, _M,
        (
            Param("previousOwner", "address", indexed=True),
            Param("newOwner", "address", indexed=True),
        ),
    ),
    EventAbi(
        LogEventKind.USER_REGISTERED, _D,
        (
            Param("addr", "address", indexed=True),
            Param("pubkey", "bytes"),
            Param("name", "string"),
            Param("bio", "string"),
            Param("avatar", "string"),
        ),
    ),
    EventAbi(
        LogEventKind.USER_UPDATED, _D,
        (
            Param("addr", "address", indexed=True),
            Param("name", "string"),
            Param("bio", "string"),
            Param("avatar", "string"),
        ),
    ),
    EventAbi(
        LogEventKind.ARBITRATOR_REGISTERED, _D,
        (
            Param("addr", "address", indexed=True),
            Param("pubkey", "bytes"),
            Param("name", "string"),
            Param("bio", "string"),
            Param("avatar", "string"),
            Param("fee", "uint16"),
        ),
    ),
    EventAbi(
        LogEventKind.ARBITRATOR_UPDATED, _D,
        (
            Param("addr", "address", indexed=True),
            Param("name", "string"),
            Param("bio", "string"),
            Param("avatar", "string"),
        ),
    ),
    EventAbi(
        LogEventKind.JOB_EVENT, _D,
        (
            Param("jobId", "uint256", indexed=True),
            Param("eventData", _JOB_EVENT_DATA),
        ),
    ),
)

_BY_KIND: Mapping[LogEventKind, EventAbi] = MappingProxyType({abi.kind: abi for abi in EVENT_ABIS})
_BY_TOPIC: Mapping[tuple[ContractDomain, str], EventAbi] = MappingProxyType(
    {(abi.domain, abi.topic): abi for abi in EVENT_ABIS}
)


@dataclass(frozen=True)
class DecodedLog:
    kind: LogEventKind
    args: Mapping[str, Any]


def event_abi(kind: LogEventKind) -> EventAbi:
    return _BY_KIND[kind]


def resolve_topic(domain: ContractDomain, topic: str) -> LogEventKind | None:
    """Map ``topic[0]`` to an event kind, or None for unknown topics."""
    abi = _BY_TOPIC.get((domain, topic.lower()))
    return abi.kind if abi else None


def _topic_bytes(topic: str) -> bytes:
    return bytes.fromhex(topic[2:] if topic.startswith("0x") else topic)


def decode_log(kind: LogEventKind, topics: Sequence[str], data: bytes) -> DecodedLog:
    """Decode indexed topics and the data section of a log.

    Raises:
        DecodeError: If topics are missing or the data does not match the ABI.
    """
    abi = _BY_KIND[kind]
    indexed = [p for p in abi.params if p.indexed]
    plain = [p for p in abi.params if not p.indexed]

    if len(topics) < len(indexed) + 1:
        raise DecodeError(kind.value, f"expected {len(indexed) + 1} topics, got {len(topics)}")

    args: dict[str, Any] = {}
    try:
        for param, topic in zip(indexed, topics[1:], strict=False):
            (args[param.name],) = abi_decode([param.abi_type], _topic_bytes(topic))
        values = abi_decode([p.abi_type for p in plain], data) if plain else ()
    except (DecodingError, UnicodeDecodeError, ValueError, OverflowError) as err:
        raise DecodeError(kind.value, str(err)) from err

    args.update({p.name: value for p, value in zip(plain, values, strict=True)})
    for param in abi.params:
        if param.abi_type == "address":
            args[param.name] = Web3.to_checksum_address(args[param.name])
    return DecodedLog(kind=kind, args=MappingProxyType(args))
