"""The reduced IPv4-like header used between nodes."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

HEADER_SIZE = 11
BROADCAST = 0xFFFF

__all__ = [
    "HEADER_SIZE",
    "BROADCAST",
    "PacketError",
    "Packet",
    "parse_packet",
    "build_packet",
    "compute_checksum",
]


class PacketError(ValueError):
    """Raised when bytes cannot be read as a packet."""


@dataclass(frozen=True)
class Packet:
    """A packet: an 11-byte header followed by its payload."""

    flag_fragment: int = 0
    fragment_offset: int = 0
    total_length: int = 0
    identifier: int = 0
    protocol: int = 0
    checksum: int = 0
    source: int = 0
    destination: int = 0
    data: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))

    def with_checksum(self) -> Packet:
        """Return a copy whose checksum field holds the computed checksum."""
        return dataclasses.replace(self, checksum=compute_checksum(self))


def parse_packet(data: bytes) -> Packet:
    """Read a packet from *data*; raise PacketError if the header is short."""
    if len(data) < HEADER_SIZE:
        raise PacketError(
            f"packet needs at least {HEADER_SIZE} bytes, got {len(data)}"
        )
    return Packet(
        flag_fragment=(data[0] >> 4) & 0x0F,
        fragment_offset=((data[0] & 0x0F) << 8) | data[1],
        total_length=data[2],
        identifier=(data[3] << 8) | data[4],
        protocol=data[5],
        checksum=data[6],
        source=(data[7] << 8) | data[8],
        destination=(data[9] << 8) | data[10],
        data=bytes(data[HEADER_SIZE:]),
    )


def build_packet(packet: Packet) -> bytes:
    """Serialise *packet* to bytes."""
    header = bytes(
        (
            ((packet.flag_fragment & 0x0F) << 4)
            | ((packet.fragment_offset >> 8) & 0x0F),
            packet.fragment_offset & 0xFF,
            packet.total_length & 0xFF,
            (packet.identifier >> 8) & 0xFF,
            packet.identifier & 0xFF,
            packet.protocol & 0xFF,
            packet.checksum & 0xFF,
            (packet.source >> 8) & 0xFF,
            packet.source & 0xFF,
            (packet.destination >> 8) & 0xFF,
            packet.destination & 0xFF,
        )
    )
    return header + packet.data


def compute_checksum(packet: Packet) -> int:
    """One-byte ones'-complement sum over the header, excluding addresses."""
    flag = packet.flag_fragment & 0xFF
    offset = packet.fragment_offset & 0xFFFF
    identifier = packet.identifier & 0xFFFF
    total = (flag << 4) | (offset >> 8)
    total += offset & 0xFF
    total += packet.total_length & 0xFF
    total += identifier >> 8
    total += identifier & 0xFF
    total += packet.protocol & 0xFF
    total &= 0xFFFF
    total = (total & 0xFF) + (total >> 8)
    return ~total & 0xFF