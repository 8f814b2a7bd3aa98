"""Frames of the node-to-modem command protocol.

Layout: one byte holding the command in its high nibble, one byte with a
6-bit payload length, up to 63 payload bytes and a one-byte FCS.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass

MAX_DATA = 63

__all__ = [
    "MAX_DATA",
    "CommandError",
    "ModemCommand",
    "build_command",
    "parse_command",
    "compute_fcs",
]


class CommandError(ValueError):
    """Raised when a command frame is malformed."""


@dataclass(frozen=True)
class ModemCommand:
    """A command for the modem with its payload and frame check byte."""

    cmd: int
    data: bytes = b""
    fcs: int = 0

    def __post_init__(self) -> None:
        data = bytes(self.data)
        if len(data) > MAX_DATA:
            raise CommandError(
                f"command payload holds at most {MAX_DATA} bytes, got {len(data)}"
            )
        object.__setattr__(self, "data", data)

    @property
    def length(self) -> int:
        """Length of the payload."""
        return len(self.data)

    def with_fcs(self) -> ModemCommand:
        """Return a copy whose fcs field holds the computed FCS."""
        return dataclasses.replace(self, fcs=compute_fcs(self))


def build_command(command: ModemCommand) -> bytes:
    """Serialise *command* to a frame."""
    header = bytes(((command.cmd & 0x0F) << 4, command.length & 0x3F))
    return header + command.data + bytes((command.fcs & 0xFF,))


def parse_command(data: bytes) -> ModemCommand:
    """Read a command frame; raise CommandError if it is truncated."""
    if len(data) < 3:
        raise CommandError(f"command frame needs at least 3 bytes, got {len(data)}")
    cmd = (data[0] >> 4) & 0x0F
    length = data[1] & 0x3F
    if len(data) < 2 + length + 1:
        raise CommandError(
            f"command frame announces {length} data bytes but is {len(data)} long"
        )
    return ModemCommand(cmd=cmd, data=bytes(data[2 : 2 + length]), fcs=data[2 + length])


def compute_fcs(command: ModemCommand) -> int:
    """XOR of the command byte, the length and every payload byte."""
    fcs = ((command.cmd << 4) & 0xFF) ^ command.length
    for byte in command.data:
        fcs ^= byte
    return fcs & 0xFF