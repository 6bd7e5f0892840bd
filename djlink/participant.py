#!/usr/bin/env python3
"""
Virtual DJ Link participant

Joins the network as a synthetic device: binds the discovery, beat and status
ports, broadcasts its own keep-alive so real hardware sees it like any other
player, tracks peers in a DeviceDirectory, follows tempo master handoffs with
a MasterArbiter and hands every decoded packet to a PacketDispatcher.
"""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Callable

from .arbitration import MasterArbiter
from .config import ParticipantConfig
from .directory import DeviceDirectory
from .dispatcher import PacketDispatcher
from .network import Datagram, DJLinkDatagramProtocol, InterfaceInfo, SocketClosed, find_interface
from .protocol import (
    CdjStatusFields,
    Fields,
    KeepAliveFields,
    Packet,
    StatusFlags,
    SyncControlFields,
    decode,
    encode,
)
from .types import (
    BEAT_PORT,
    COMMAND_SYNC_OFF,
    COMMAND_SYNC_ON,
    DEVICE_TYPE_PLAYER,
    DISCOVERY_PORT,
    PORTS,
    STATUS_PORT,
    DecodeError,
    DeviceIdConflictError,
    SocketFailureError,
)

# flag byte bits that are always set in player status
STATUS_FLAG_BASE = 0x84


class VirtualParticipant:  # pylint: disable=too-many-instance-attributes
    """A synthetic DJ Link device.

    ``start`` binds one socket per well-known port and runs one receive loop
    per socket plus periodic keep-alive and directory expiry tasks. ``stop``
    closes everything and only returns once those loops have finished; it
    can be called any number of times.
    """

    def __init__(
        self,
        config: ParticipantConfig | None = None,
        directory: DeviceDirectory | None = None,
        dispatcher: PacketDispatcher | None = None,
        arbiter: MasterArbiter | None = None,
    ) -> None:
        self.config = config or ParticipantConfig()
        self.directory = directory or DeviceDirectory(timeout=self.config.device_timeout)
        self.dispatcher = dispatcher or PacketDispatcher()
        self.arbiter = arbiter or MasterArbiter(name=self.config.name)
        self.interface: InterfaceInfo | None = None
        self.device_number: int = 0
        self.synced: bool = False
        self.playing: bool = False

        self._destinations = dict(zip(PORTS, self.config.ports))
        self._transports: dict[int, asyncio.DatagramTransport] = {}
        self._receive_tasks: list[asyncio.Task] = []
        self._periodic_tasks: list[asyncio.Task] = []
        self._running = False
        self._stopped: asyncio.Event | None = None
        self._packet_counter = 0

    async def __aenter__(self) -> "VirtualParticipant":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.stop()

    @property
    def running(self) -> bool:
        """is the participant on the network"""
        return self._running

    @property
    def bound_ports(self) -> dict[int, int]:
        """well-known port -> the local port actually bound"""
        return {
            port: transport.get_extra_info("sockname")[1]
            for port, transport in self._transports.items()
        }

    @property
    def broadcast_address(self) -> str:
        """where keep-alives and status echoes go"""
        if self.config.broadcast_address:
            return self.config.broadcast_address
        return self.interface.broadcast if self.interface else "255.255.255.255"

    # -----------------------------------------------------------------------
    # lifecycle
    # -----------------------------------------------------------------------

    async def start(self, interface: str | InterfaceInfo | None = None) -> None:
        """Join the network on ``interface`` (a name, details, or the default)."""
        if self._running:
            return

        if not isinstance(interface, InterfaceInfo):
            interface = find_interface(interface)
        self.interface = interface

        await self._bind()
        self._running = True
        self._stopped = asyncio.Event()

        if self.config.claim_delay:
            # listen for a while so the directory knows which numbers are taken
            await asyncio.sleep(self.config.claim_delay)
            if not self._running:
                return

        try:
            self.device_number = self._choose_device_number()
        except DeviceIdConflictError:
            await self.stop()
            raise
        self.arbiter.reset(self.device_number)

        self._periodic_tasks = [
            asyncio.create_task(
                self._periodic(self.config.announce_interval, self.announce), name="djlink-keepalive"
            ),
            asyncio.create_task(
                self._periodic(self.config.expiry_interval, self.directory.expire), name="djlink-expiry"
            ),
        ]
        if self.config.send_status:
            self._periodic_tasks.append(
                asyncio.create_task(
                    self._periodic(self.config.status_interval, self.send_status), name="djlink-status"
                )
            )
        logging.info(
            "Virtual participant %s started as device %d on %s (%s)",
            self.config.name,
            self.device_number,
            interface.name,
            interface.address,
        )

    async def _bind(self) -> None:
        loop = asyncio.get_running_loop()
        for port, destination in self._destinations.items():
            # ephemeral binds still send to the configured ports
            local_port = 0 if self.config.ephemeral_ports else destination
            queue: asyncio.Queue[Datagram | SocketClosed] = asyncio.Queue()
            try:
                transport, _protocol = await loop.create_datagram_endpoint(
                    lambda port=port, queue=queue: DJLinkDatagramProtocol(port, queue),
                    local_addr=(self.config.bind_address, local_port),
                    allow_broadcast=True,
                )
            except OSError as err:
                await self._close_sockets()
                raise SocketFailureError(f"Unable to bind DJ Link port {local_port}: {err}") from err
            self._transports[port] = transport
            self._receive_tasks.append(
                asyncio.create_task(self._receive_loop(port, queue), name=f"djlink-receive-{port}")
            )

    async def stop(self) -> None:
        """Leave the network, closing sockets and cancelling periodic tasks."""
        if not self._running:
            if self._stopped is not None:
                await self._stopped.wait()
            return

        self._running = False
        stopped = self._stopped
        logging.info("Stopping virtual participant %s (device %d)", self.config.name, self.device_number)

        for task in self._periodic_tasks:
            task.cancel()
        await asyncio.gather(*self._periodic_tasks, return_exceptions=True)
        self._periodic_tasks = []

        await self._close_sockets()
        if stopped:
            stopped.set()
        logging.info("Virtual participant %s stopped", self.config.name)

    async def _close_sockets(self) -> None:
        for transport in self._transports.values():
            transport.close()
        current = asyncio.current_task()
        waiting = [task for task in self._receive_tasks if task is not current]
        await asyncio.gather(*waiting, return_exceptions=True)
        self._transports = {}
        self._receive_tasks = []

    async def _periodic(self, interval: float, action: Callable[[], object]) -> None:
        while True:
            try:
                action()
            except Exception as err:  # pylint: disable=broad-exception-caught
                logging.error("Periodic DJ Link task %s failed: %s", action, err)
            await asyncio.sleep(interval)

    # -----------------------------------------------------------------------
    # receiving
    # -----------------------------------------------------------------------

    async def _receive_loop(self, port: int, queue: "asyncio.Queue[Datagram | SocketClosed]") -> None:
        while True:
            item = await queue.get()
            if isinstance(item, SocketClosed):
                if item.error is not None and self._running:
                    logging.error("Lost DJ Link port %d (%s), shutting down", port, item.error)
                    await self.stop()
                return
            try:
                self.process(port, item.data, item.addr)
            except Exception as err:  # pylint: disable=broad-exception-caught
                logging.error("Error handling packet from %s on port %d: %s", item.addr, port, err)

    def process(self, port: int, data: bytes, addr: tuple[str, int]) -> Packet | None:
        """decode one datagram and route it; returns the packet if it was valid"""
        result = decode(data, port)
        if isinstance(result, DecodeError):
            logging.debug("Dropping packet from %s on port %d: %s", addr, port, result)
            return None

        packet = result
        if self._is_own(packet, addr):
            return None

        if packet.port == DISCOVERY_PORT:
            self._handle_discovery(packet)
        else:
            self._handle_command(packet)
        self.dispatcher.deliver(packet)
        return packet

    def _is_own(self, packet: Packet, addr: tuple[str, int]) -> bool:
        return bool(
            self.interface
            and self.device_number
            and packet.device_number == self.device_number
            and addr[0] == self.interface.address
        )

    def _handle_discovery(self, packet: Packet) -> None:
        fields = packet.fields
        if not isinstance(fields, KeepAliveFields):
            return
        self.directory.observe(packet)
        if self._running and self.device_number and fields.device_number == self.device_number:
            previous = self.device_number
            was_master = self.arbiter.is_master
            self.device_number = self._choose_device_number()
            self.arbiter.reset(self.device_number)
            logging.warning(
                "Device %s at %s is using our device number %d, switching to %d",
                fields.name,
                fields.ip_address,
                previous,
                self.device_number,
            )
            if was_master:
                logging.warning(
                    "Dropped tempo master role as device %d without a handoff; peers may still follow it",
                    previous,
                )
            self.announce()

    def _handle_command(self, packet: Packet) -> None:
        fields = packet.fields
        if isinstance(fields, SyncControlFields) and fields.target == self.device_number:
            if fields.command in (COMMAND_SYNC_ON, COMMAND_SYNC_OFF):
                self.synced = fields.command == COMMAND_SYNC_ON
                logging.info("Device %d turned our sync %s", fields.device_number, "on" if self.synced else "off")
        for reply in self.arbiter.handle(fields):
            self.send_command(reply)

    def _choose_device_number(self) -> int:
        taken = self.directory.numbers()
        candidates = self.config.candidate_numbers()
        for candidate in candidates:
            if candidate not in taken:
                if candidate != candidates[0] and self.config.device_number:
                    logging.warning(
                        "Device number %d is in use, using %d instead", self.config.device_number, candidate
                    )
                return candidate
        raise DeviceIdConflictError(
            f"No free device number between {self.config.first_device_number} "
            f"and {self.config.last_device_number}"
        )

    # -----------------------------------------------------------------------
    # sending
    # -----------------------------------------------------------------------

    def _send(self, port: int, data: bytes, address: str) -> bool:
        transport = self._transports.get(port)
        if transport is None or transport.is_closing():
            logging.debug("Not sending to %s:%d, socket is closed", address, port)
            return False
        transport.sendto(data, (address, self._destinations[port]))
        return True

    def keep_alive_fields(self) -> KeepAliveFields:
        """our own identity broadcast"""
        if not self.interface:
            raise RuntimeError("Participant has not been started")
        return KeepAliveFields(
            name=self.config.name,
            device_number=self.device_number,
            mac_address=self.interface.mac_address,
            ip_address=self.interface.address,
            device_type=DEVICE_TYPE_PLAYER,
            peer_count=len(self.directory) + 1,
        )

    def status_fields(self) -> CdjStatusFields:
        """status echo describing this participant"""
        flags = StatusFlags(
            playing=self.playing, master=self.arbiter.is_master, synced=self.synced
        ).to_byte(STATUS_FLAG_BASE)
        return CdjStatusFields(
            name=self.config.name,
            device_number=self.device_number,
            flags=flags,
            packet_counter=self._packet_counter,
        )

    def announce(self) -> bool:
        """broadcast our keep-alive"""
        return self._send(DISCOVERY_PORT, encode(self.keep_alive_fields()), self.broadcast_address)

    def send_status(self) -> bool:
        """broadcast our status"""
        self._packet_counter = (self._packet_counter + 1) & 0xFFFFFFFF
        return self._send(STATUS_PORT, encode(self.status_fields()), self.broadcast_address)

    def send_command(self, fields: Fields) -> bool:
        """send a command packet to the device it targets"""
        target = getattr(fields, "target", None)
        device = self.directory.get(target) if target is not None else None
        if device is None:
            logging.warning(
                "Cannot send %s to device %s, it is not on the network",
                fields.packet_type.name,
                target,
            )
            return False
        logging.debug("Sending %s to %s", fields.packet_type.name, device)
        return self._send(BEAT_PORT, encode(fields), device.address)

    def _send_all(self, commands: tuple[Fields, ...]) -> bool:
        # False when the arbiter had nothing to send
        return bool(commands) and all(self.send_command(fields) for fields in commands)

    def request_mastership(self) -> bool:
        """ask the current tempo master to hand over to us"""
        return self._send_all(self.arbiter.request_mastership())

    def yield_mastership(self, target: int) -> bool:
        """offer our tempo mastership to ``target``"""
        return self._send_all(self.arbiter.yield_mastership(target))

    def appoint_master(self, target: int) -> bool:
        """tell ``target`` to become tempo master"""
        return self._send_all(self.arbiter.appoint_master(target))

    def set_sync_mode(self, target: int, enabled: bool) -> bool:
        """turn sync on or off for ``target``"""
        return self.send_command(
            SyncControlFields(
                name=self.config.name,
                device_number=self.device_number,
                target=target,
                command=COMMAND_SYNC_ON if enabled else COMMAND_SYNC_OFF,
            )
        )


@contextlib.asynccontextmanager
async def join_network(
    config: ParticipantConfig | None = None, interface: str | InterfaceInfo | None = None
) -> AsyncIterator[VirtualParticipant]:
    """Context manager that runs a virtual participant."""
    participant = VirtualParticipant(config)
    try:
        await participant.start(interface)
        yield participant
    finally:
        await participant.stop()
