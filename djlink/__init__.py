#!/usr/bin/env python3
"""
DJ Link protocol engine

Decodes the UDP packets that DJ Link players and mixers exchange, tracks the
devices on the network, follows the tempo master handoff and can join the
network as a virtual participant.
"""

# Re-export main components for easy importing
from .arbitration import MasterArbiter, MasterRole, MasterState
from .config import ConfigFile, ParticipantConfig
from .directory import DeviceDirectory
from .dispatcher import PacketDispatcher, Subscription
from .network import InterfaceInfo, find_interface
from .participant import VirtualParticipant, join_network
from .protocol import Packet, decode, encode
from .types import (
    BEAT_PORT,
    DISCOVERY_PORT,
    STATUS_PORT,
    DecodeError,
    DecodeErrorKind,
    Device,
    DJLinkError,
    PacketType,
)

__version__ = "0.1.0"
__all__ = [
    "BEAT_PORT",
    "DISCOVERY_PORT",
    "STATUS_PORT",
    "ConfigFile",
    "DecodeError",
    "DecodeErrorKind",
    "Device",
    "DeviceDirectory",
    "DJLinkError",
    "InterfaceInfo",
    "MasterArbiter",
    "MasterRole",
    "MasterState",
    "Packet",
    "PacketDispatcher",
    "PacketType",
    "ParticipantConfig",
    "Subscription",
    "VirtualParticipant",
    "decode",
    "encode",
    "find_interface",
    "join_network",
]
