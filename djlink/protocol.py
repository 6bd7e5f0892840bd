#!/usr/bin/env python3
"""
DJ Link Packet Codec

This module handles the low-level DJ Link packet parsing and formatting.
Everything here is pure: bytes in, typed fields out (and back again), no I/O.

Decoded fields keep the raw wire integers (pitch, BPM x 100, cue beats) so that
``decode(encode(fields))`` gives back exactly what went in; the human friendly
values are exposed as properties.
"""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Union

from .types import (
    ALLOWED_LENGTHS,
    COMMAND_BECOME_MASTER,
    COMMAND_SYNC_OFF,
    COMMAND_SYNC_ON,
    DEVICE_NAME_WIDTH,
    DEVICE_TYPE_PLAYER,
    FLAG_MASTER,
    FLAG_ON_AIR,
    FLAG_PLAYING,
    FLAG_SYNC,
    MAGIC_HEADER,
    NEUTRAL_PITCH,
    NO_BEAT,
    NO_CUE,
    PORTS,
    TYPE_OFFSET,
    DecodeError,
    DecodeErrorKind,
    PacketType,
)

CUE_PLACEHOLDER = "--.-"
CUE_AT_CUE = "00.0"
CUE_UNREPRESENTABLE = "??.?"
MAX_CUE_BEATS = 0x100
MAX_PITCH = 0x200000

PLAY_MODE_1 = {
    0: "No Track",
    3: "Playing",
    4: "Looping",
    5: "Stopped",
    6: "Cued",
    9: "Search",
    17: "Ended",
}
PLAY_MODE_2 = {106: "Play", 110: "Stop", 122: "nxs Play", 126: "nxs Stop"}
PLAY_MODE_3 = {0: "No Track", 1: "Stop or Reverse", 9: "Forward Vinyl", 13: "Forward CDJ"}
USB_LOCAL_STATE = {4: "Unloaded", 2: "Unloading...", 0: "Loaded"}

# Name field starts one byte later on the discovery port
DISCOVERY_NAME_OFFSET = 0x0C
NAME_OFFSET = 0x0B

NEXUS_STATUS_LENGTH = 212
LEGACY_STATUS_LENGTH = 208
NEXUS_MARKER = 0x0F
LEGACY_MARKER = 0x05


# ---------------------------------------------------------------------------
# field primitives
# ---------------------------------------------------------------------------


def build_int(data: bytes, offset: int, size: int) -> int:
    """combine ``size`` bytes starting at ``offset``, most significant first"""
    return int.from_bytes(data[offset : offset + size], "big")


def put_int(buffer: bytearray, offset: int, size: int, value: int) -> None:
    """write a big-endian unsigned integer, refusing values that do not fit"""
    try:
        buffer[offset : offset + size] = int(value).to_bytes(size, "big")
    except OverflowError as err:
        raise ValueError(f"{value} does not fit in {size} byte(s) at offset {offset}") from err


def pitch_percent(raw: int) -> float:
    """convert a raw 3-byte pitch value to a signed percentage"""
    return 100.0 * (raw - NEUTRAL_PITCH) / NEUTRAL_PITCH


def pitch_to_raw(percent: float) -> int:
    """convert a pitch percentage to the raw wire value"""
    raw = round(NEUTRAL_PITCH + percent * NEUTRAL_PITCH / 100.0)
    return max(0, min(MAX_PITCH, raw))


def calculate_pitch(data: bytes, offset: int) -> float:
    """pitch percentage of the 3-byte field at ``offset``"""
    return pitch_percent(build_int(data, offset, 3))


def tempo_bpm(raw: int) -> float:
    """BPM from the wire value, which is BPM x 100"""
    return raw / 100.0


def effective_bpm(bpm: float, pitch: float) -> float:
    """track tempo adjusted by the pitch percentage"""
    return bpm + bpm * pitch / 100.0


def format_cue_countdown(beats: int) -> str:
    """Format a number of beats before a cue point the way players do.

    ``0x1ff`` means there is no upcoming cue, ``0`` means we are on it and
    anything above 64 bars cannot be shown.
    """
    if beats == NO_CUE:
        return CUE_PLACEHOLDER
    if 1 <= beats <= MAX_CUE_BEATS:
        return f"{(beats - 1) // 4:02d}.{(beats - 1) % 4 + 1}"
    if beats == 0:
        return CUE_AT_CUE
    return CUE_UNREPRESENTABLE


def read_device_name(data: bytes, offset: int, width: int = DEVICE_NAME_WIDTH) -> str:
    """fixed width name field; every non-zero byte is a character"""
    return bytes(value for value in data[offset : offset + width] if value).decode("latin-1")


def write_device_name(
    buffer: bytearray, offset: int, name: str, width: int = DEVICE_NAME_WIDTH
) -> None:
    """write a name into a zero padded fixed width field"""
    try:
        encoded = name.encode("ascii")
    except UnicodeEncodeError as err:
        raise ValueError(f"{name!r} is not ASCII") from err
    if len(encoded) > width or b"\x00" in encoded:
        raise ValueError(f"{name!r} does not fit a {width} byte name field")
    buffer[offset : offset + width] = encoded.ljust(width, b"\x00")


def format_mac(data: bytes) -> str:
    """six bytes as aa:bb:cc:dd:ee:ff"""
    return ":".join(f"{value:02x}" for value in data)


def parse_mac(mac: str) -> bytes:
    """aa:bb:cc:dd:ee:ff as six bytes"""
    parts = mac.replace("-", ":").split(":")
    if len(parts) != 6:
        raise ValueError(f"Invalid MAC address: {mac}")
    return bytes(int(part, 16) for part in parts)


@dataclass(frozen=True)
class StatusFlags:
    """the named bits of a status flag byte"""

    playing: bool = False
    master: bool = False
    synced: bool = False
    on_air: bool = False

    @classmethod
    def from_byte(cls, value: int) -> "StatusFlags":
        """split a flag byte into booleans"""
        return cls(
            playing=bool(value & FLAG_PLAYING),
            master=bool(value & FLAG_MASTER),
            synced=bool(value & FLAG_SYNC),
            on_air=bool(value & FLAG_ON_AIR),
        )

    def to_byte(self, base: int = 0) -> int:
        """merge the flags into ``base``, which carries any unnamed bits"""
        value = base & ~(FLAG_PLAYING | FLAG_MASTER | FLAG_SYNC | FLAG_ON_AIR)
        if self.playing:
            value |= FLAG_PLAYING
        if self.master:
            value |= FLAG_MASTER
        if self.synced:
            value |= FLAG_SYNC
        if self.on_air:
            value |= FLAG_ON_AIR
        return value


# ---------------------------------------------------------------------------
# field sets, one per packet family
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KeepAliveFields:
    """periodic identity broadcast on the discovery port"""

    name: str
    device_number: int
    mac_address: str
    ip_address: str
    device_type: int = DEVICE_TYPE_PLAYER
    peer_count: int = 1

    packet_type = PacketType.KEEP_ALIVE


@dataclass(frozen=True)
class DeviceHelloFields:
    """first broadcast a device makes when joining"""

    name: str
    device_type: int = DEVICE_TYPE_PLAYER

    packet_type = PacketType.DEVICE_HELLO


@dataclass(frozen=True)
class BeatFields:  # pylint: disable=too-many-instance-attributes
    """beat-timing packet"""

    name: str
    device_number: int
    pitch_raw: int = NEUTRAL_PITCH
    bpm_raw: int = 0
    beat_within_bar: int = 1
    next_beat: int = 0
    second_beat: int = 0
    next_bar: int = 0
    fourth_beat: int = 0
    second_bar: int = 0
    eighth_beat: int = 0

    packet_type = PacketType.BEAT

    @property
    def pitch(self) -> float:
        """pitch as a percentage"""
        return pitch_percent(self.pitch_raw)

    @property
    def bpm(self) -> float:
        """track tempo"""
        return tempo_bpm(self.bpm_raw)

    @property
    def effective_bpm(self) -> float:
        """tempo after pitch adjustment"""
        return effective_bpm(self.bpm, self.pitch)


@dataclass(frozen=True)
class SyncControlFields:
    """sync on/off or become-master command sent to one device"""

    name: str
    device_number: int
    target: int
    command: int

    packet_type = PacketType.SYNC_CONTROL

    @property
    def become_master(self) -> bool:
        """is this a become-master command"""
        return self.command == COMMAND_BECOME_MASTER

    @property
    def sync_on(self) -> bool:
        """does this turn sync on"""
        return self.command == COMMAND_SYNC_ON

    @property
    def sync_off(self) -> bool:
        """does this turn sync off"""
        return self.command == COMMAND_SYNC_OFF


@dataclass(frozen=True)
class MasterHandoffRequestFields:
    """announce that ``new_master`` should take over"""

    name: str
    device_number: int
    target: int
    new_master: int

    packet_type = PacketType.MASTER_HANDOFF_REQUEST


@dataclass(frozen=True)
class MasterHandoffResponseFields:
    """acknowledge (or refuse) a master handoff request"""

    name: str
    device_number: int
    target: int
    new_master: int
    accepted: bool = True

    packet_type = PacketType.MASTER_HANDOFF_RESPONSE


@dataclass(frozen=True)
class CdjStatusFields:  # pylint: disable=too-many-instance-attributes
    """status of a player-class device"""

    name: str
    device_number: int
    active: int = 0
    track_number: int = 0
    usb_activity: int = 4
    usb_local: int = 4
    usb_global: int = 0
    play_mode_1: int = 0
    firmware: str = ""
    sync_counter: int = 0
    flags: int = 0x84
    play_mode_2: int = 110
    pitch_raw: tuple[int, int, int, int] = (NEUTRAL_PITCH,) * 4
    bpm_raw: int = 0
    play_mode_3: int = 0
    beat: int = NO_BEAT
    cue_countdown: int = NO_CUE
    beat_within_bar: int = 0
    packet_counter: int = 0
    nexus: bool = True

    packet_type = PacketType.CDJ_STATUS

    @property
    def status_flags(self) -> StatusFlags:
        """named flag bits"""
        return StatusFlags.from_byte(self.flags)

    @property
    def playing(self) -> bool:
        """is the player in play mode"""
        return self.status_flags.playing

    @property
    def master(self) -> bool:
        """is the player the tempo master"""
        return self.status_flags.master

    @property
    def synced(self) -> bool:
        """is sync enabled"""
        return self.status_flags.synced

    @property
    def on_air(self) -> bool:
        """is the mixer channel live"""
        return self.status_flags.on_air

    @property
    def has_track(self) -> bool:
        """is a track loaded"""
        return self.play_mode_1 != 0

    @property
    def pitches(self) -> tuple[float, ...]:
        """the four pitch copies as percentages"""
        return tuple(pitch_percent(raw) for raw in self.pitch_raw)

    @property
    def pitch(self) -> float:
        """the current pitch"""
        return pitch_percent(self.pitch_raw[0])

    @property
    def bpm(self) -> float | None:
        """track tempo, if a track is loaded"""
        return tempo_bpm(self.bpm_raw) if self.has_track else None

    @property
    def effective_bpm(self) -> float | None:
        """tempo after pitch adjustment, if a track is loaded"""
        bpm = self.bpm
        return None if bpm is None else effective_bpm(bpm, self.pitch)

    @property
    def beat_number(self) -> int | None:
        """beat within the track, None when not known"""
        return None if self.beat == NO_BEAT else self.beat

    @property
    def cue_countdown_text(self) -> str:
        """countdown to the next memory point as the player shows it"""
        return format_cue_countdown(self.cue_countdown)

    @property
    def near_cue(self) -> bool:
        """within four bars of a memory point"""
        return self.cue_countdown < 17

    @property
    def play_state(self) -> str:
        """name of play mode 1"""
        return PLAY_MODE_1.get(self.play_mode_1, "???")

    @property
    def usb_local_state(self) -> str:
        """name of the local USB media state"""
        return USB_LOCAL_STATE.get(self.usb_local, "???")

    @property
    def usb_present(self) -> bool:
        """is USB media mounted in any player"""
        return self.usb_global > 0


@dataclass(frozen=True)
class MixerStatusFields:
    """status of a mixer-class device"""

    name: str
    device_number: int
    flags: int = 0x80
    pitch_raw: int = NEUTRAL_PITCH
    bpm_raw: int = 0
    beat_within_bar: int = 0

    packet_type = PacketType.MIXER_STATUS

    @property
    def status_flags(self) -> StatusFlags:
        """named flag bits"""
        return StatusFlags.from_byte(self.flags)

    @property
    def master(self) -> bool:
        """is the mixer the tempo master"""
        return self.status_flags.master

    @property
    def synced(self) -> bool:
        """is sync enabled"""
        return self.status_flags.synced

    @property
    def bpm(self) -> float:
        """current tempo"""
        return tempo_bpm(self.bpm_raw)


Fields = Union[
    KeepAliveFields,
    DeviceHelloFields,
    BeatFields,
    SyncControlFields,
    MasterHandoffRequestFields,
    MasterHandoffResponseFields,
    CdjStatusFields,
    MixerStatusFields,
]


@dataclass(frozen=True)
class Packet:
    """A decoded DJ Link packet"""

    port: int
    packet_type: PacketType
    raw: bytes
    fields: Fields

    @property
    def type_byte(self) -> int:
        """the wire type byte"""
        return self.packet_type.type_byte

    @property
    def device_number(self) -> int | None:
        """number of the device that sent the packet, if it carries one"""
        return getattr(self.fields, "device_number", None)

    @property
    def is_discovery(self) -> bool:
        """did this arrive on the discovery port"""
        return self.packet_type in (PacketType.KEEP_ALIVE, PacketType.DEVICE_HELLO)


# ---------------------------------------------------------------------------
# per-family parsers and writers
# ---------------------------------------------------------------------------


def _parse_keep_alive(data: bytes) -> KeepAliveFields:
    return KeepAliveFields(
        name=read_device_name(data, DISCOVERY_NAME_OFFSET),
        device_number=data[0x24],
        device_type=data[0x25],
        mac_address=format_mac(data[0x26:0x2C]),
        ip_address=str(ipaddress.IPv4Address(data[0x2C:0x30])),
        peer_count=data[0x30],
    )


def _write_keep_alive(buffer: bytearray, fields: KeepAliveFields) -> None:
    buffer[0x20] = 0x01
    buffer[0x21] = 0x02
    put_int(buffer, 0x22, 2, len(buffer))
    put_int(buffer, 0x24, 1, fields.device_number)
    put_int(buffer, 0x25, 1, fields.device_type)
    buffer[0x26:0x2C] = parse_mac(fields.mac_address)
    buffer[0x2C:0x30] = ipaddress.IPv4Address(fields.ip_address).packed
    put_int(buffer, 0x30, 1, fields.peer_count)


def _parse_device_hello(data: bytes) -> DeviceHelloFields:
    return DeviceHelloFields(name=read_device_name(data, DISCOVERY_NAME_OFFSET), device_type=data[0x24])


def _write_device_hello(buffer: bytearray, fields: DeviceHelloFields) -> None:
    buffer[0x20] = 0x01
    buffer[0x21] = 0x02
    put_int(buffer, 0x22, 2, len(buffer))
    put_int(buffer, 0x24, 1, fields.device_type)


_BEAT_INTERVALS = ("next_beat", "second_beat", "next_bar", "fourth_beat", "second_bar", "eighth_beat")


def _parse_beat(data: bytes) -> BeatFields:
    intervals = {
        field: build_int(data, 0x24 + index * 4, 4) for index, field in enumerate(_BEAT_INTERVALS)
    }
    return BeatFields(
        name=read_device_name(data, NAME_OFFSET),
        device_number=data[0x21],
        pitch_raw=build_int(data, 0x55, 3),
        bpm_raw=build_int(data, 0x5A, 2),
        beat_within_bar=data[0x5C],
        **intervals,
    )


def _write_beat(buffer: bytearray, fields: BeatFields) -> None:
    put_int(buffer, 0x21, 1, fields.device_number)
    for index, field in enumerate(_BEAT_INTERVALS):
        put_int(buffer, 0x24 + index * 4, 4, getattr(fields, field))
    buffer[0x3C:0x54] = b"\xff" * 0x18
    put_int(buffer, 0x55, 3, fields.pitch_raw)
    put_int(buffer, 0x5A, 2, fields.bpm_raw)
    put_int(buffer, 0x5C, 1, fields.beat_within_bar)
    put_int(buffer, 0x5F, 1, fields.device_number)


def _parse_sync_control(data: bytes) -> SyncControlFields:
    return SyncControlFields(
        name=read_device_name(data, NAME_OFFSET),
        device_number=data[0x21],
        target=data[0x24],
        command=data[0x2B],
    )


def _write_sync_control(buffer: bytearray, fields: SyncControlFields) -> None:
    put_int(buffer, 0x21, 1, fields.device_number)
    put_int(buffer, 0x24, 1, fields.target)
    put_int(buffer, 0x27, 1, fields.device_number)
    put_int(buffer, 0x2B, 1, fields.command)


def _parse_handoff_request(data: bytes) -> MasterHandoffRequestFields:
    return MasterHandoffRequestFields(
        name=read_device_name(data, NAME_OFFSET),
        device_number=data[0x21],
        target=data[0x24],
        new_master=data[0x27],
    )


def _write_handoff_request(buffer: bytearray, fields: MasterHandoffRequestFields) -> None:
    put_int(buffer, 0x21, 1, fields.device_number)
    put_int(buffer, 0x24, 1, fields.target)
    put_int(buffer, 0x27, 1, fields.new_master)


def _parse_handoff_response(data: bytes) -> MasterHandoffResponseFields:
    return MasterHandoffResponseFields(
        name=read_device_name(data, NAME_OFFSET),
        device_number=data[0x21],
        target=data[0x24],
        new_master=data[0x27],
        accepted=data[0x2B] == 1,
    )


def _write_handoff_response(buffer: bytearray, fields: MasterHandoffResponseFields) -> None:
    put_int(buffer, 0x21, 1, fields.device_number)
    put_int(buffer, 0x24, 1, fields.target)
    put_int(buffer, 0x27, 1, fields.new_master)
    buffer[0x2B] = 1 if fields.accepted else 0


_PITCH_OFFSETS = (141, 153, 193, 197)


def _parse_cdj_status(data: bytes) -> CdjStatusFields:
    return CdjStatusFields(
        name=read_device_name(data, NAME_OFFSET),
        device_number=data[0x21],
        active=data[39],
        track_number=build_int(data, 50, 2),
        usb_activity=data[106],
        usb_local=data[111],
        usb_global=data[117],
        play_mode_1=data[123],
        firmware=read_device_name(data, 124, 4),
        sync_counter=build_int(data, 134, 2),
        flags=data[137],
        play_mode_2=data[139],
        pitch_raw=tuple(build_int(data, offset, 3) for offset in _PITCH_OFFSETS),
        bpm_raw=build_int(data, 146, 2),
        play_mode_3=data[157],
        beat=build_int(data, 160, 4),
        cue_countdown=build_int(data, 164, 2),
        beat_within_bar=data[166],
        packet_counter=build_int(data, 200, 4),
        nexus=len(data) == NEXUS_STATUS_LENGTH,
    )


def _write_cdj_status(buffer: bytearray, fields: CdjStatusFields) -> None:
    buffer[0x20] = 0x03
    put_int(buffer, 0x22, 2, len(buffer) - 0x24)
    put_int(buffer, 0x21, 1, fields.device_number)
    put_int(buffer, 0x24, 1, fields.device_number)
    buffer[0x26] = 0x01
    put_int(buffer, 39, 1, fields.active)
    put_int(buffer, 50, 2, fields.track_number)
    put_int(buffer, 106, 1, fields.usb_activity)
    put_int(buffer, 111, 1, fields.usb_local)
    put_int(buffer, 117, 1, fields.usb_global)
    put_int(buffer, 123, 1, fields.play_mode_1)
    write_device_name(buffer, 124, fields.firmware, 4)
    put_int(buffer, 134, 2, fields.sync_counter)
    put_int(buffer, 137, 1, fields.flags)
    put_int(buffer, 139, 1, fields.play_mode_2)
    if len(fields.pitch_raw) != len(_PITCH_OFFSETS):
        raise ValueError("Player status needs exactly four pitch values")
    for offset, raw in zip(_PITCH_OFFSETS, fields.pitch_raw):
        put_int(buffer, offset, 3, raw)
    put_int(buffer, 146, 2, fields.bpm_raw)
    put_int(buffer, 157, 1, fields.play_mode_3)
    put_int(buffer, 160, 4, fields.beat)
    put_int(buffer, 164, 2, fields.cue_countdown)
    put_int(buffer, 166, 1, fields.beat_within_bar)
    put_int(buffer, 200, 4, fields.packet_counter)
    buffer[204] = NEXUS_MARKER if fields.nexus else LEGACY_MARKER


def _parse_mixer_status(data: bytes) -> MixerStatusFields:
    return MixerStatusFields(
        name=read_device_name(data, NAME_OFFSET),
        device_number=data[0x21],
        flags=data[39],
        pitch_raw=build_int(data, 0x28, 4),
        bpm_raw=build_int(data, 46, 2),
        beat_within_bar=data[55],
    )


def _write_mixer_status(buffer: bytearray, fields: MixerStatusFields) -> None:
    put_int(buffer, 0x22, 2, len(buffer) - 0x24)
    put_int(buffer, 0x21, 1, fields.device_number)
    put_int(buffer, 0x24, 1, fields.device_number)
    put_int(buffer, 39, 1, fields.flags)
    put_int(buffer, 0x28, 4, fields.pitch_raw)
    put_int(buffer, 46, 2, fields.bpm_raw)
    put_int(buffer, 55, 1, fields.beat_within_bar)


_CODECS = {
    PacketType.KEEP_ALIVE: (_parse_keep_alive, _write_keep_alive),
    PacketType.DEVICE_HELLO: (_parse_device_hello, _write_device_hello),
    PacketType.BEAT: (_parse_beat, _write_beat),
    PacketType.SYNC_CONTROL: (_parse_sync_control, _write_sync_control),
    PacketType.MASTER_HANDOFF_REQUEST: (_parse_handoff_request, _write_handoff_request),
    PacketType.MASTER_HANDOFF_RESPONSE: (_parse_handoff_response, _write_handoff_response),
    PacketType.CDJ_STATUS: (_parse_cdj_status, _write_cdj_status),
    PacketType.MIXER_STATUS: (_parse_mixer_status, _write_mixer_status),
}


# ---------------------------------------------------------------------------
# public codec
# ---------------------------------------------------------------------------


def decode(data: bytes, port: int) -> Packet | DecodeError:
    """Decode a datagram received on ``port``.

    Never raises for bad input: any buffer that fails the header, type or
    length checks comes back as a classified ``DecodeError``.
    """
    raw = bytes(data)
    if raw[: len(MAGIC_HEADER)] != MAGIC_HEADER:
        return DecodeError(DecodeErrorKind.BAD_HEADER, f"missing DJ Link header ({len(raw)} bytes)")
    if len(raw) <= TYPE_OFFSET:
        return DecodeError(DecodeErrorKind.BAD_LENGTH, f"no type byte in {len(raw)} byte packet")
    if port not in PORTS:
        return DecodeError(DecodeErrorKind.UNKNOWN_PORT, f"port {port} is not a DJ Link port")

    type_byte = raw[TYPE_OFFSET]
    packet_type = PacketType.lookup(port, type_byte)
    if packet_type is None:
        return DecodeError(
            DecodeErrorKind.UNRECOGNIZED_TYPE,
            f"type 0x{type_byte:02x} is not recognized on port {port}",
        )

    allowed = ALLOWED_LENGTHS[packet_type]
    if len(raw) not in allowed:
        return DecodeError(
            DecodeErrorKind.BAD_LENGTH,
            f"expecting {packet_type.name} of length {sorted(allowed)} but it has length {len(raw)}",
        )

    parser, _ = _CODECS[packet_type]
    return Packet(port=port, packet_type=packet_type, raw=raw, fields=parser(raw))


def packet_length(fields: Fields) -> int:
    """how many bytes ``fields`` encodes to"""
    if isinstance(fields, CdjStatusFields):
        return NEXUS_STATUS_LENGTH if fields.nexus else LEGACY_STATUS_LENGTH
    return min(ALLOWED_LENGTHS[fields.packet_type])


def encode(fields: Fields) -> bytes:
    """Build the wire bytes for a field set.

    Raises ValueError if a field does not fit its wire representation.
    """
    packet_type = fields.packet_type
    buffer = bytearray(packet_length(fields))
    buffer[: len(MAGIC_HEADER)] = MAGIC_HEADER
    buffer[TYPE_OFFSET] = packet_type.type_byte
    if packet_type in (PacketType.KEEP_ALIVE, PacketType.DEVICE_HELLO):
        write_device_name(buffer, DISCOVERY_NAME_OFFSET, fields.name)
    else:
        write_device_name(buffer, NAME_OFFSET, fields.name)
        buffer[0x1F] = 0x01
    _, writer = _CODECS[packet_type]
    writer(buffer, fields)
    logging.debug("Encoded %s (%d bytes)", packet_type.name, len(buffer))
    return bytes(buffer)
