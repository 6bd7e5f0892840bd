#!/usr/bin/env python3
"""
DJ Link UDP plumbing

The asyncio datagram protocol that feeds a receive queue, and helpers that
use netifaces to work out which address, broadcast address and MAC address
the virtual participant should present on a network interface.
"""

import asyncio
import errno
import logging
from dataclasses import dataclass
from typing import NamedTuple

import netifaces

from .types import DJLinkError

GLOBAL_BROADCAST = "255.255.255.255"
NULL_MAC = "00:00:00:00:00:00"

# unicast and broadcast send failures that leave the socket usable
TRANSIENT_ERRNOS = frozenset({errno.EHOSTUNREACH, errno.ENETUNREACH, errno.EACCES, errno.EADDRNOTAVAIL})


class Datagram(NamedTuple):
    """one received datagram"""

    data: bytes
    addr: tuple[str, int]


class SocketClosed(NamedTuple):
    """queued when the transport goes away; ``error`` is None on a clean close"""

    error: Exception | None = None


class DJLinkDatagramProtocol(asyncio.DatagramProtocol):
    """UDP protocol handler for one DJ Link port.

    Datagrams are queued in arrival order for the participant's receive loop
    rather than handled inline, so a slow consumer never runs inside the
    event loop's socket callback.
    """

    def __init__(self, port: int, queue: "asyncio.Queue[Datagram | SocketClosed]") -> None:
        self.port = port
        self.queue = queue
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        """Called when the socket is bound."""
        self.transport = transport  # type: ignore[assignment]
        logging.debug("DJ Link UDP socket ready on port %d", self.port)

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        """Called when a datagram is received."""
        self.queue.put_nowait(Datagram(data, addr))

    def error_received(self, exc: Exception) -> None:
        """Called when a send or receive operation raises an OSError."""
        if is_transient_error(exc):
            logging.debug("DJ Link port %d socket error (ignored): %s", self.port, exc)
            return
        logging.error("DJ Link port %d socket error: %s", self.port, exc)
        self.queue.put_nowait(SocketClosed(exc))

    def connection_lost(self, exc: Exception | None) -> None:
        """Called when the socket is closed."""
        if exc:
            logging.error("DJ Link port %d connection lost: %s", self.port, exc)
        else:
            logging.debug("DJ Link port %d socket closed", self.port)
        self.queue.put_nowait(SocketClosed(exc))


def is_transient_error(exc: Exception) -> bool:
    """can the socket carry on after ``exc``"""
    if isinstance(exc, ConnectionRefusedError):
        # ICMP port unreachable from an earlier unicast send
        return True
    if "address family mismatched" in str(exc):
        return True
    return getattr(exc, "errno", None) in TRANSIENT_ERRNOS


@dataclass(frozen=True)
class InterfaceInfo:
    """the addresses a participant presents on one network interface"""

    name: str
    address: str
    broadcast: str = GLOBAL_BROADCAST
    mac_address: str = NULL_MAC
    netmask: str = "255.255.255.0"


def default_interface_name() -> str:
    """the interface carrying the default IPv4 route"""
    try:
        gws = netifaces.gateways()  # pylint: disable=no-member
        return gws["default"][netifaces.AF_INET][1]  # pylint: disable=no-member
    except (KeyError, IndexError, TypeError) as err:
        raise DJLinkError("No default IPv4 interface found") from err


def find_interface(name: str | None = None) -> InterfaceInfo:
    """look up address details for ``name`` (or the default interface)"""
    if not name:
        name = default_interface_name()
    if name not in netifaces.interfaces():  # pylint: disable=no-member
        raise DJLinkError(f"Unknown network interface: {name}")

    addrs = netifaces.ifaddresses(name)  # pylint: disable=no-member
    inet = addrs.get(netifaces.AF_INET)  # pylint: disable=no-member
    if not inet:
        raise DJLinkError(f"Network interface {name} has no IPv4 address")

    link = addrs.get(netifaces.AF_LINK, [{}])  # pylint: disable=no-member
    mac_address = link[0].get("addr") or NULL_MAC
    if len(mac_address.split(":")) != 6:
        mac_address = NULL_MAC

    info = InterfaceInfo(
        name=name,
        address=inet[0]["addr"],
        broadcast=inet[0].get("broadcast") or GLOBAL_BROADCAST,
        mac_address=mac_address,
        netmask=inet[0].get("netmask") or "255.255.255.0",
    )
    logging.debug("Using interface %s", info)
    return info

