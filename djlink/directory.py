#!/usr/bin/env python3
"""
DJ Link Device Directory

Tracks the devices seen on the discovery port. Entries are created on the
first keep-alive, refreshed on every following one and dropped by ``expire``
once they have been silent for longer than the timeout.
"""

import logging
import threading
import time
from collections.abc import Callable
from types import MappingProxyType

from .protocol import KeepAliveFields, Packet
from .types import Device

DEFAULT_TIMEOUT = 10.0


class DeviceDirectory:
    """Registry of live DJ Link devices keyed by device number.

    Writers serialize on a lock and publish a fresh read-only mapping, so
    ``all()`` and ``get()`` never wait on a writer.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self.clock = clock
        self._lock = threading.Lock()
        self._devices: MappingProxyType[int, Device] = MappingProxyType({})

    def observe(self, packet: Packet, timestamp: float | None = None) -> Device | None:
        """insert or refresh the device that sent a keep-alive"""
        fields = packet.fields
        if not isinstance(fields, KeepAliveFields):
            return None
        if timestamp is None:
            timestamp = self.clock()

        device = Device(
            number=fields.device_number,
            name=fields.name,
            mac_address=fields.mac_address,
            address=fields.ip_address,
            last_seen=timestamp,
            device_type=fields.device_type,
        )
        with self._lock:
            previous = self._devices.get(device.number)
            updated = dict(self._devices)
            updated[device.number] = device
            self._devices = MappingProxyType(updated)

        if previous is None:
            logging.info("Device discovered: %s", device)
        elif (previous.mac_address, previous.address, previous.name) != (
            device.mac_address,
            device.address,
            device.name,
        ):
            logging.info("Device #%d reconnected: %s (was %s)", device.number, device, previous)
        return device

    def expire(self, now: float | None = None) -> list[Device]:
        """remove devices not seen within the timeout, returning them"""
        if now is None:
            now = self.clock()
        with self._lock:
            stale = [
                device for device in self._devices.values() if now - device.last_seen > self.timeout
            ]
            if not stale:
                return []
            self._devices = MappingProxyType(
                {
                    number: device
                    for number, device in self._devices.items()
                    if now - device.last_seen <= self.timeout
                }
            )
        for device in stale:
            logging.info("Device lost: %s", device)
        return stale

    def remove(self, number: int) -> Device | None:
        """forget a device immediately"""
        with self._lock:
            if number not in self._devices:
                return None
            updated = dict(self._devices)
            device = updated.pop(number)
            self._devices = MappingProxyType(updated)
        return device

    def all(self) -> tuple[Device, ...]:
        """snapshot of the known devices, ordered by device number"""
        devices = self._devices
        return tuple(devices[number] for number in sorted(devices))

    def get(self, number: int) -> Device | None:
        """look up a device by number"""
        return self._devices.get(number)

    def is_known(self, number: int) -> bool:
        """is a device with this number currently live"""
        return number in self._devices

    def numbers(self) -> frozenset[int]:
        """device numbers currently in use"""
        return frozenset(self._devices)

    def clear(self) -> None:
        """forget every device"""
        with self._lock:
            self._devices = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._devices)

    def __contains__(self, number: object) -> bool:
        return number in self._devices
