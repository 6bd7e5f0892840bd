#!/usr/bin/env python3
"""Tests for participant configuration"""

import logging
import pathlib

import pytest

from djlink.config import ParticipantConfig


def test_defaults():
    """Test the default participant settings"""
    config = ParticipantConfig()
    assert config.name == "djlink"
    assert config.ports == (50000, 50001, 50002)
    assert config.candidate_numbers()[0] == 7
    assert config.candidate_numbers()[-1] == 127


def test_preferred_number_first():
    """Test a configured number is tried before the range"""
    config = ParticipantConfig(device_number=9, first_device_number=7, last_device_number=10)
    assert config.candidate_numbers() == [9, 7, 8, 10]
    outside = ParticipantConfig(device_number=2, first_device_number=7, last_device_number=8)
    assert outside.candidate_numbers() == [2, 7, 8]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": ""},
        {"name": "a name far too long for the field"},
        {"device_number": 300},
        {"first_device_number": 0},
        {"first_device_number": 20, "last_device_number": 10},
        {"announce_interval": 0},
        {"device_timeout": -1},
        {"claim_delay": -0.5},
    ],
)
def test_invalid_settings(kwargs):
    """Test bad settings are rejected"""
    with pytest.raises(ValueError):
        ParticipantConfig(**kwargs)


def test_config_defaults(bootstrap):
    """Test a fresh config file yields the default participant"""
    config = bootstrap
    assert config.participant_config() == ParticipantConfig()
    assert config.interface == ""


def test_config_save_and_load(bootstrap):
    """Test participant settings survive a save"""
    config = bootstrap
    wanted = ParticipantConfig(
        name="booth",
        device_number=9,
        announce_interval=2.5,
        send_status=True,
        broadcast_address="192.168.1.255",
    )
    config.interface = "eth1"
    config.save(wanted)
    config.get()
    assert config.interface == "eth1"
    assert config.participant_config() == wanted


def test_config_logging(bootstrap):
    """Test logging follows the configured level and file"""
    config = bootstrap
    config.loglevel = "INFO"
    config.save()
    config.get()
    root = logging.getLogger()
    level = root.level
    handler = config.setuplogging()
    try:
        assert pathlib.Path(handler.baseFilename) == config.logpath.absolute()
        assert root.level == logging.INFO
        logging.info("participant configured")
        handler.flush()
        assert "participant configured" in config.logpath.read_text(encoding="utf-8")
    finally:
        root.removeHandler(handler)
        handler.close()
        root.setLevel(level)


def test_ephemeral_ports_setting(bootstrap):
    """Test the ephemeral bind option is stored like any other setting"""
    config = bootstrap
    config.save(ParticipantConfig(ephemeral_ports=True))
    assert config.participant_config().ephemeral_ports
    with pytest.raises(ValueError):
        ParticipantConfig(beat_port=70000)
