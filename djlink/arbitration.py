#!/usr/bin/env python3
"""
Tempo master arbitration

The handoff on the wire is a two party exchange: one device sends a master
handoff request naming the device that should become master, the other
answers with a handoff response. A mixer may also appoint a master directly
with a become-master sync control command.

The transition functions here are pure: they take the current ``MasterState``
and a decoded field set and return the next state plus any replies to send.
``MasterArbiter`` wraps them with a lock for use by the participant.
"""

import enum
import logging
import threading
from dataclasses import dataclass, replace
from typing import NamedTuple

from .protocol import (
    CdjStatusFields,
    Fields,
    MasterHandoffRequestFields,
    MasterHandoffResponseFields,
    MixerStatusFields,
    SyncControlFields,
)
from .types import COMMAND_BECOME_MASTER, ArbitrationViolationError


class MasterRole(enum.Enum):
    """What this participant believes about its own mastership"""

    UNKNOWN = "unknown"
    NOT_MASTER = "not-master"
    MASTER = "master"
    PENDING_HANDOFF = "pending-handoff"


@dataclass(frozen=True)
class MasterState:
    """The arbitration state of one participant.

    ``master`` is the device number believed to be master, if any.
    ``pending_with`` is the device we are mid-handoff with: the master we
    asked while PENDING_HANDOFF, or the peer we offered mastership to while
    MASTER.
    """

    role: MasterRole = MasterRole.UNKNOWN
    master: int | None = None
    pending_with: int | None = None


class Transition(NamedTuple):
    """result of feeding one event to the state machine"""

    state: MasterState
    replies: tuple[Fields, ...] = ()
    violation: ArbitrationViolationError | None = None


def _unchanged(state: MasterState, reason: str) -> Transition:
    return Transition(state, (), ArbitrationViolationError(reason))


def _become_master(state: MasterState, fields: SyncControlFields, number: int) -> Transition:
    if fields.target == fields.device_number:
        return _unchanged(state, f"device {fields.device_number} told itself to become master")
    if fields.target == number:
        return Transition(MasterState(MasterRole.MASTER, master=number))
    return Transition(MasterState(MasterRole.NOT_MASTER, master=fields.target))


def _announce(
    state: MasterState, fields: MasterHandoffRequestFields, number: int, name: str
) -> Transition:
    sender = fields.device_number
    if fields.new_master == number:
        # the sender is offering us mastership
        if state.role == MasterRole.MASTER:
            return _unchanged(state, f"device {sender} offered mastership we already hold")
        if state.master not in (None, sender):
            return _unchanged(
                state, f"device {sender} offered mastership but device {state.master} is master"
            )
        ack = MasterHandoffResponseFields(
            name=name, device_number=number, target=sender, new_master=number
        )
        return Transition(MasterState(MasterRole.MASTER, master=number), (ack,))

    if fields.new_master == sender:
        # the sender wants to take over from us
        if state.role != MasterRole.MASTER:
            return _unchanged(
                state, f"device {sender} asked us for mastership but we are {state.role.value}"
            )
        ack = MasterHandoffResponseFields(
            name=name, device_number=number, target=sender, new_master=sender
        )
        return Transition(MasterState(MasterRole.NOT_MASTER, master=sender), (ack,))

    return _unchanged(
        state, f"device {sender} announced device {fields.new_master} as master to us"
    )


def _acknowledge(state: MasterState, fields: MasterHandoffResponseFields, number: int) -> Transition:
    sender = fields.device_number
    if state.pending_with != sender:
        return _unchanged(state, f"acknowledge from device {sender} with no matching announcement")

    if state.role == MasterRole.PENDING_HANDOFF and fields.new_master == number:
        if fields.accepted:
            return Transition(MasterState(MasterRole.MASTER, master=number))
        logging.info("Device %d refused to hand over mastership", sender)
        return Transition(MasterState(MasterRole.NOT_MASTER, master=state.master))

    if state.role == MasterRole.MASTER and fields.new_master == sender:
        if fields.accepted:
            return Transition(MasterState(MasterRole.NOT_MASTER, master=sender))
        logging.info("Device %d declined mastership", sender)
        return Transition(replace(state, pending_with=None))

    return _unchanged(
        state, f"acknowledge from device {sender} naming {fields.new_master} while {state.role.value}"
    )


def _status(state: MasterState, fields: CdjStatusFields | MixerStatusFields, number: int) -> Transition:
    sender = fields.device_number
    if not fields.master or sender == number:
        return Transition(state)
    if state.role == MasterRole.MASTER:
        return _unchanged(state, f"device {sender} reports itself master while we are master")
    if state.role == MasterRole.UNKNOWN:
        return Transition(MasterState(MasterRole.NOT_MASTER, master=sender))
    return Transition(replace(state, master=sender))


def transition(state: MasterState, fields: Fields, number: int, name: str = "") -> Transition:
    """Apply a decoded packet to the state of participant ``number``.

    Commands addressed to another device and packet families that carry no
    arbitration information leave the state untouched.
    """
    if isinstance(fields, SyncControlFields):
        if fields.command != COMMAND_BECOME_MASTER:
            return Transition(state)
        return _become_master(state, fields, number)
    if isinstance(fields, MasterHandoffRequestFields):
        if fields.target != number:
            return Transition(state)
        return _announce(state, fields, number, name)
    if isinstance(fields, MasterHandoffResponseFields):
        if fields.target != number:
            return Transition(state)
        return _acknowledge(state, fields, number)
    if isinstance(fields, (CdjStatusFields, MixerStatusFields)):
        return _status(state, fields, number)
    return Transition(state)


def request_mastership(state: MasterState, number: int, name: str = "") -> Transition:
    """ask the current master to hand over to us"""
    if state.role in (MasterRole.MASTER, MasterRole.PENDING_HANDOFF):
        return Transition(state)
    if state.role != MasterRole.NOT_MASTER or state.master is None or state.master == number:
        return _unchanged(state, "there is no current master to ask for mastership")
    announce = MasterHandoffRequestFields(
        name=name, device_number=number, target=state.master, new_master=number
    )
    return Transition(
        MasterState(MasterRole.PENDING_HANDOFF, master=state.master, pending_with=state.master),
        (announce,),
    )


def yield_mastership(state: MasterState, target: int, number: int, name: str = "") -> Transition:
    """offer our mastership to ``target``; we stay master until it acknowledges"""
    if state.role != MasterRole.MASTER:
        return _unchanged(state, f"cannot yield mastership while {state.role.value}")
    if target == number:
        return _unchanged(state, "cannot yield mastership to ourselves")
    announce = MasterHandoffRequestFields(name=name, device_number=number, target=target, new_master=target)
    return Transition(replace(state, pending_with=target), (announce,))


def appoint_master(state: MasterState, target: int, number: int, name: str = "") -> Transition:
    """tell ``target`` to become master, the way a mixer does"""
    if target == number:
        return _unchanged(state, "a device does not appoint itself master, it requests mastership")
    command = SyncControlFields(
        name=name, device_number=number, target=target, command=COMMAND_BECOME_MASTER
    )
    return Transition(_become_master(state, command, number).state, (command,))


class MasterArbiter:
    """Thread safe owner of one participant's ``MasterState``"""

    def __init__(self, number: int = 0, name: str = ""):
        self.number = number
        self.name = name
        self._lock = threading.Lock()
        self._state = MasterState()

    @property
    def state(self) -> MasterState:
        """current state"""
        return self._state

    @property
    def role(self) -> MasterRole:
        """current role"""
        return self._state.role

    @property
    def is_master(self) -> bool:
        """do we hold mastership"""
        return self._state.role == MasterRole.MASTER

    def reset(self, number: int | None = None) -> None:
        """forget everything, optionally under a new device number"""
        with self._lock:
            if number is not None:
                self.number = number
            self._state = MasterState()

    def _apply(self, result: Transition, previous: MasterState) -> tuple[Fields, ...]:
        if result.violation:
            logging.warning("Arbitration violation ignored: %s", result.violation)
        elif result.state.role != previous.role:
            logging.info(
                "Device %d master role %s -> %s (master: %s)",
                self.number,
                previous.role.value,
                result.state.role.value,
                result.state.master,
            )
        self._state = result.state
        return result.replies

    def handle(self, fields: Fields) -> tuple[Fields, ...]:
        """feed a decoded packet, returning any replies to send"""
        with self._lock:
            previous = self._state
            return self._apply(transition(previous, fields, self.number, self.name), previous)

    def request_mastership(self) -> tuple[Fields, ...]:
        """start a handoff towards us"""
        with self._lock:
            previous = self._state
            return self._apply(request_mastership(previous, self.number, self.name), previous)

    def yield_mastership(self, target: int) -> tuple[Fields, ...]:
        """start a handoff away from us"""
        with self._lock:
            previous = self._state
            return self._apply(yield_mastership(previous, target, self.number, self.name), previous)

    def appoint_master(self, target: int) -> tuple[Fields, ...]:
        """build a become-master command for ``target``"""
        with self._lock:
            previous = self._state
            return self._apply(appoint_master(previous, target, self.number, self.name), previous)
