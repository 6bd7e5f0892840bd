#!/usr/bin/env python3
"""
Packet listener registry

Consumers subscribe to a port and either one device number or every device,
and get each matching decoded packet delivered to their callback.
"""

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from .protocol import Packet

PacketCallback = Callable[[Packet], None]


@dataclass(frozen=True)
class Subscription:
    """a registered listener; also the token used to unsubscribe"""

    port: int
    device_number: int | None
    callback: PacketCallback = field(compare=False)
    token: int = 0

    def matches(self, packet: Packet) -> bool:
        """does this subscription want ``packet``"""
        if self.port != packet.port:
            return False
        return self.device_number is None or self.device_number == packet.device_number


class PacketDispatcher:
    """Delivers packets to subscribers in registration order.

    Delivery happens synchronously on the thread (or event loop) that
    received the packet, so callbacks are expected to return quickly. A
    callback that raises is logged and the remaining subscribers still run.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._subscriptions: tuple[Subscription, ...] = ()

    def subscribe(
        self, port: int, device_number: int | None, callback: PacketCallback
    ) -> Subscription:
        """register ``callback``; pass None as the device number for every device"""
        with self._lock:
            subscription = Subscription(
                port=port, device_number=device_number, callback=callback, token=next(self._counter)
            )
            self._subscriptions = self._subscriptions + (subscription,)
        logging.debug(
            "Subscribed %s to port %d device %s", callback, port, device_number or "any"
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """remove a subscription; False if it was not registered"""
        with self._lock:
            remaining = tuple(sub for sub in self._subscriptions if sub.token != subscription.token)
            if len(remaining) == len(self._subscriptions):
                return False
            self._subscriptions = remaining
        return True

    def clear(self) -> None:
        """drop every subscription"""
        with self._lock:
            self._subscriptions = ()

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        """current subscriptions in registration order"""
        return self._subscriptions

    def deliver(self, packet: Packet) -> int:
        """hand ``packet`` to every matching subscriber, returning how many ran"""
        delivered = 0
        for subscription in self._subscriptions:
            if not subscription.matches(packet):
                continue
            try:
                subscription.callback(packet)
                delivered += 1
            except Exception as err:  # pylint: disable=broad-exception-caught
                logging.error(
                    "Packet listener %s failed on %s from device %s: %s",
                    subscription.callback,
                    packet.packet_type.name,
                    packet.device_number,
                    err,
                )
        return delivered

    def __len__(self) -> int:
        return len(self._subscriptions)
