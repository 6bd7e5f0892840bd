#!/usr/bin/env python3
"""Tests for tempo master arbitration"""

import logging

import pytest

from djlink.arbitration import (
    MasterArbiter,
    MasterRole,
    MasterState,
    appoint_master,
    request_mastership,
    transition,
    yield_mastership,
)
from djlink.protocol import (
    CdjStatusFields,
    MasterHandoffRequestFields,
    MasterHandoffResponseFields,
    MixerStatusFields,
    Packet,
    SyncControlFields,
    decode,
    encode,
)
from djlink.types import BEAT_PORT, COMMAND_BECOME_MASTER, COMMAND_SYNC_ON, FLAG_MASTER

MASTER = MasterState(MasterRole.MASTER, master=2)
NOT_MASTER = MasterState(MasterRole.NOT_MASTER, master=3)


def over_the_wire(fields):
    """encode and decode, as a peer would see the packet"""
    packet = decode(encode(fields), BEAT_PORT)
    assert isinstance(packet, Packet)
    return packet.fields


def exchange(arbiters, outgoing):
    """deliver packets to their targets until nobody has anything left to say"""
    queue = list(outgoing)
    while queue:
        fields = over_the_wire(queue.pop(0))
        queue.extend(arbiters[fields.target].handle(fields))


def test_become_master_targeting_us():
    """Test a become-master command for us makes us master"""
    command = SyncControlFields(name="DJM", device_number=33, target=2, command=COMMAND_BECOME_MASTER)
    result = transition(MasterState(), command, 2)
    assert result.state == MasterState(MasterRole.MASTER, master=2)
    assert result.replies == ()
    assert result.violation is None


def test_become_master_targeting_someone_else():
    """Test we learn who was appointed when overhearing the command"""
    command = SyncControlFields(name="DJM", device_number=33, target=3, command=COMMAND_BECOME_MASTER)
    result = transition(MASTER, command, 2)
    assert result.state == MasterState(MasterRole.NOT_MASTER, master=3)


def test_become_master_from_target_itself_is_violation():
    """Test a device cannot command itself to become master"""
    command = SyncControlFields(name="DJM", device_number=33, target=33, command=COMMAND_BECOME_MASTER)
    result = transition(NOT_MASTER, command, 2)
    assert result.state == NOT_MASTER
    assert result.violation is not None


def test_sync_commands_leave_state_alone():
    """Test non-master commands do not affect arbitration"""
    command = SyncControlFields(name="DJM", device_number=33, target=2, command=COMMAND_SYNC_ON)
    assert transition(MASTER, command, 2).state == MASTER


def test_offer_accepted_when_not_master():
    """Test being offered mastership by the current master"""
    offer = MasterHandoffRequestFields(name="CDJ", device_number=3, target=2, new_master=2)
    result = transition(NOT_MASTER, offer, 2, "me")
    assert result.state == MasterState(MasterRole.MASTER, master=2)
    assert result.replies == (
        MasterHandoffResponseFields(name="me", device_number=2, target=3, new_master=2),
    )


def test_offer_from_non_master_is_violation():
    """Test only the device we believe is master can offer mastership"""
    offer = MasterHandoffRequestFields(name="CDJ", device_number=4, target=2, new_master=2)
    result = transition(NOT_MASTER, offer, 2)
    assert result.state == NOT_MASTER
    assert result.replies == ()
    assert result.violation is not None


def test_offer_while_master_is_violation():
    """Test an offer of what we already hold is rejected"""
    offer = MasterHandoffRequestFields(name="CDJ", device_number=3, target=2, new_master=2)
    result = transition(MASTER, offer, 2)
    assert result.state == MASTER
    assert result.violation is not None


def test_takeover_request_while_master():
    """Test handing over when a peer asks for mastership"""
    request = MasterHandoffRequestFields(name="CDJ", device_number=3, target=2, new_master=3)
    result = transition(MASTER, request, 2, "me")
    assert result.state == MasterState(MasterRole.NOT_MASTER, master=3)
    assert result.replies == (
        MasterHandoffResponseFields(name="me", device_number=2, target=3, new_master=3),
    )


def test_takeover_request_while_not_master_is_violation():
    """Test a non-master cannot hand over mastership"""
    request = MasterHandoffRequestFields(name="CDJ", device_number=4, target=2, new_master=4)
    result = transition(NOT_MASTER, request, 2)
    assert result.state == NOT_MASTER
    assert result.violation is not None


def test_request_for_another_device_is_ignored():
    """Test handoff packets addressed elsewhere do nothing"""
    request = MasterHandoffRequestFields(name="CDJ", device_number=3, target=4, new_master=3)
    result = transition(MASTER, request, 2)
    assert result.state == MASTER
    assert result.violation is None


def test_acknowledge_without_announce_is_violation():
    """Test an unexpected acknowledge leaves the state alone"""
    ack = MasterHandoffResponseFields(name="CDJ", device_number=3, target=2, new_master=3)
    result = transition(MASTER, ack, 2)
    assert result.state == MASTER
    assert result.violation is not None


def test_request_mastership_and_accept():
    """Test asking the master for mastership and being granted it"""
    result = request_mastership(NOT_MASTER, 2, "me")
    assert result.state == MasterState(MasterRole.PENDING_HANDOFF, master=3, pending_with=3)
    assert result.replies == (
        MasterHandoffRequestFields(name="me", device_number=2, target=3, new_master=2),
    )
    ack = MasterHandoffResponseFields(name="CDJ", device_number=3, target=2, new_master=2)
    assert transition(result.state, ack, 2).state == MasterState(MasterRole.MASTER, master=2)


def test_request_mastership_refused():
    """Test a refusal leaves us following the old master"""
    pending = request_mastership(NOT_MASTER, 2).state
    refusal = MasterHandoffResponseFields(
        name="CDJ", device_number=3, target=2, new_master=2, accepted=False
    )
    assert transition(pending, refusal, 2).state == NOT_MASTER


def test_request_mastership_without_master_is_violation():
    """Test nobody can be asked when no master is known"""
    result = request_mastership(MasterState(), 2)
    assert result.state == MasterState()
    assert result.replies == ()
    assert result.violation is not None


def test_request_mastership_when_master_is_noop():
    """Test asking for what we already hold"""
    result = request_mastership(MASTER, 2)
    assert result.state == MASTER
    assert result.replies == ()
    assert result.violation is None


def test_yield_mastership_declined():
    """Test we stay master when the peer declines"""
    offered = yield_mastership(MASTER, 3, 2).state
    assert offered == MasterState(MasterRole.MASTER, master=2, pending_with=3)
    decline = MasterHandoffResponseFields(
        name="CDJ", device_number=3, target=2, new_master=3, accepted=False
    )
    assert transition(offered, decline, 2).state == MASTER


def test_yield_mastership_requires_master():
    """Test only the master may yield"""
    assert yield_mastership(NOT_MASTER, 3, 2).violation is not None
    assert yield_mastership(MASTER, 2, 2).violation is not None


def test_appoint_master():
    """Test appointing a master produces a become-master command"""
    result = appoint_master(MasterState(), 2, 33, "DJM")
    assert result.state == MasterState(MasterRole.NOT_MASTER, master=2)
    assert result.replies == (
        SyncControlFields(name="DJM", device_number=33, target=2, command=COMMAND_BECOME_MASTER),
    )
    assert appoint_master(MasterState(), 33, 33).violation is not None


def test_status_master_flag():
    """Test status packets teach us who the master is"""
    status = CdjStatusFields(name="CDJ", device_number=3, flags=0x84 | FLAG_MASTER)
    assert transition(MasterState(), status, 2).state == MasterState(MasterRole.NOT_MASTER, master=3)
    mixer = MixerStatusFields(name="DJM", device_number=33, flags=0x80 | FLAG_MASTER)
    assert transition(NOT_MASTER, mixer, 2).state == MasterState(MasterRole.NOT_MASTER, master=33)
    assert transition(MASTER, status, 2).violation is not None
    own = CdjStatusFields(name="me", device_number=2, flags=0x84 | FLAG_MASTER)
    assert transition(MASTER, own, 2).state == MASTER
    quiet = CdjStatusFields(name="CDJ", device_number=3)
    assert transition(MASTER, quiet, 2).state == MASTER


def test_captured_handoff_sequence():
    """Test the handoff sequence seen between a mixer and two players"""
    arbiters = {number: MasterArbiter(number, f"device {number}") for number in (2, 3, 33)}

    exchange(arbiters, arbiters[33].appoint_master(2))
    assert arbiters[2].role == MasterRole.MASTER
    assert arbiters[33].state.master == 2

    exchange(arbiters, arbiters[2].yield_mastership(3))
    assert arbiters[3].role == MasterRole.MASTER
    assert arbiters[2].state == MasterState(MasterRole.NOT_MASTER, master=3)

    exchange(arbiters, arbiters[3].yield_mastership(2))
    assert arbiters[2].role == MasterRole.MASTER
    assert arbiters[3].state == MasterState(MasterRole.NOT_MASTER, master=2)

    exchange(arbiters, arbiters[33].request_mastership())
    assert arbiters[33].is_master
    assert arbiters[2].state == MasterState(MasterRole.NOT_MASTER, master=33)
    assert [number for number, arbiter in arbiters.items() if arbiter.is_master] == [33]


def test_arbiter_logs_violations(caplog):
    """Test the arbiter reports and ignores bad handoff traffic"""
    caplog.set_level(logging.INFO)
    arbiter = MasterArbiter(2, "me")
    ack = MasterHandoffResponseFields(name="CDJ", device_number=3, target=2, new_master=2)
    assert arbiter.handle(ack) == ()
    assert arbiter.role == MasterRole.UNKNOWN
    assert "Arbitration violation ignored" in caplog.text

    arbiter.handle(SyncControlFields(name="DJM", device_number=33, target=2, command=COMMAND_BECOME_MASTER))
    assert "unknown -> master" in caplog.text


@pytest.mark.parametrize("number", [5, 9])
def test_arbiter_reset(number):
    """Test reset forgets state and can renumber"""
    arbiter = MasterArbiter(2)
    arbiter.handle(SyncControlFields(name="DJM", device_number=33, target=2, command=COMMAND_BECOME_MASTER))
    assert arbiter.is_master
    arbiter.reset(number)
    assert arbiter.number == number
    assert arbiter.state == MasterState()
