#!/usr/bin/env python3
"""
Shared data types and constants for the DJ Link protocol

This module contains the constants, data classes and exceptions used
throughout the DJ Link implementation.
"""

import enum
from dataclasses import dataclass, replace

# Protocol constants
MAGIC_HEADER = bytes([0x51, 0x73, 0x70, 0x74, 0x31, 0x57, 0x6D, 0x4A, 0x4F, 0x4C])
TYPE_OFFSET = 0x0A

DISCOVERY_PORT = 50000
BEAT_PORT = 50001
STATUS_PORT = 50002
PORTS = (DISCOVERY_PORT, BEAT_PORT, STATUS_PORT)

DEVICE_NAME_WIDTH = 20

# Flag bits in the status flag byte
FLAG_PLAYING = 0x40
FLAG_MASTER = 0x20
FLAG_SYNC = 0x10
FLAG_ON_AIR = 0x08

# Sync control command bytes
COMMAND_BECOME_MASTER = 0x01
COMMAND_SYNC_ON = 0x10
COMMAND_SYNC_OFF = 0x20

# Device type byte in keep-alive packets
DEVICE_TYPE_PLAYER = 0x01
DEVICE_TYPE_MIXER = 0x02
DEVICE_TYPE_COMPUTER = 0x03

NEUTRAL_PITCH = 0x100000
NO_CUE = 0x1FF
NO_BEAT = 0xFFFFFFFF


class PacketType(enum.Enum):
    """The closed set of packet families, keyed by (port, type byte)"""

    KEEP_ALIVE = (DISCOVERY_PORT, 0x06)
    DEVICE_HELLO = (DISCOVERY_PORT, 0x0A)
    BEAT = (BEAT_PORT, 0x28)
    SYNC_CONTROL = (BEAT_PORT, 0x2A)
    MASTER_HANDOFF_REQUEST = (BEAT_PORT, 0x26)
    MASTER_HANDOFF_RESPONSE = (BEAT_PORT, 0x27)
    CDJ_STATUS = (STATUS_PORT, 0x0A)
    MIXER_STATUS = (STATUS_PORT, 0x29)

    @property
    def port(self) -> int:
        """port the packet family arrives on"""
        return self.value[0]

    @property
    def type_byte(self) -> int:
        """the byte at offset 0x0a"""
        return self.value[1]

    @classmethod
    def lookup(cls, port: int, type_byte: int) -> "PacketType | None":
        """find the family for a port and type byte"""
        return _PACKET_TYPES.get((port, type_byte))


_PACKET_TYPES = {ptype.value: ptype for ptype in PacketType}

ALLOWED_LENGTHS: dict[PacketType, frozenset[int]] = {
    PacketType.KEEP_ALIVE: frozenset({54}),
    PacketType.DEVICE_HELLO: frozenset({37}),
    PacketType.BEAT: frozenset({96}),
    PacketType.SYNC_CONTROL: frozenset({44}),
    PacketType.MASTER_HANDOFF_REQUEST: frozenset({40}),
    PacketType.MASTER_HANDOFF_RESPONSE: frozenset({44}),
    PacketType.CDJ_STATUS: frozenset({208, 212}),
    PacketType.MIXER_STATUS: frozenset({56}),
}


class DecodeErrorKind(enum.Enum):
    """Why a buffer could not be decoded"""

    BAD_HEADER = "bad-header"
    UNKNOWN_PORT = "unknown-port"
    UNRECOGNIZED_TYPE = "unrecognized-type"
    BAD_LENGTH = "bad-length"


@dataclass(frozen=True)
class DecodeError:
    """A classified failure to decode a packet"""

    kind: DecodeErrorKind
    detail: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}"


@dataclass(frozen=True)
class Device:
    """A DJ Link device seen on the discovery port"""

    number: int
    name: str
    mac_address: str
    address: str
    last_seen: float
    device_type: int = DEVICE_TYPE_PLAYER

    def refreshed(self, timestamp: float) -> "Device":
        """copy of this device with a new last-seen time"""
        return replace(self, last_seen=timestamp)

    def __str__(self) -> str:
        return f"{self.name} #{self.number} at {self.address} ({self.mac_address})"


class DJLinkError(Exception):
    """Base exception for DJ Link protocol errors"""


class SocketFailureError(DJLinkError):
    """A socket could not be bound or stopped receiving"""


class DeviceIdConflictError(DJLinkError):
    """No usable device number could be found"""


class ArbitrationViolationError(DJLinkError):
    """A master handoff packet arrived that does not fit the current state"""
