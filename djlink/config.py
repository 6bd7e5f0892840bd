#!/usr/bin/env python3
"""
config file parsing/handling
"""

import contextlib
import logging
import pathlib
import sys
import time
from dataclasses import asdict, dataclass, fields

from PySide6.QtCore import (  # pylint: disable=no-name-in-module
    QCoreApplication,
    QSettings,
    QStandardPaths,
)

from . import bootstrap
from .directory import DEFAULT_TIMEOUT
from .types import BEAT_PORT, DEVICE_NAME_WIDTH, DISCOVERY_PORT, STATUS_PORT


@dataclass
class ParticipantConfig:  # pylint: disable=too-many-instance-attributes
    """Configuration for a virtual DJ Link participant."""

    name: str = "djlink"
    device_number: int = 0
    first_device_number: int = 7
    last_device_number: int = 127
    announce_interval: float = 1.5
    device_timeout: float = DEFAULT_TIMEOUT
    expiry_interval: float = 1.0
    claim_delay: float = 1.0
    send_status: bool = False
    status_interval: float = 0.2
    bind_address: str = "0.0.0.0"
    broadcast_address: str = ""
    discovery_port: int = DISCOVERY_PORT
    beat_port: int = BEAT_PORT
    status_port: int = STATUS_PORT
    ephemeral_ports: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.name:
            raise ValueError("Participant name cannot be empty")
        if len(self.name) > DEVICE_NAME_WIDTH or not self.name.isascii():
            raise ValueError(f"Participant name must be at most {DEVICE_NAME_WIDTH} ASCII characters")
        if not 0 <= self.device_number <= 255:
            raise ValueError("Device number must be between 1 and 255, or 0 for automatic")
        if not 1 <= self.first_device_number <= self.last_device_number <= 255:
            raise ValueError("Device number range must lie within 1-255")
        for interval in ("announce_interval", "device_timeout", "expiry_interval", "status_interval"):
            if getattr(self, interval) <= 0:
                raise ValueError(f"{interval} must be positive")
        if self.claim_delay < 0:
            raise ValueError("claim_delay cannot be negative")
        for port in self.ports:
            if not 0 <= port <= 0xFFFF:
                raise ValueError(f"Invalid UDP port: {port}")

    @property
    def ports(self) -> tuple[int, int, int]:
        """discovery, beat and status ports packets are sent to"""
        return (self.discovery_port, self.beat_port, self.status_port)

    def candidate_numbers(self) -> list[int]:
        """device numbers to try, preferred number first"""
        candidates = list(range(self.first_device_number, self.last_device_number + 1))
        if self.device_number:
            if self.device_number in candidates:
                candidates.remove(self.device_number)
            candidates.insert(0, self.device_number)
        return candidates


class ConfigFile:
    """read and write the participant settings"""

    def __init__(self, logpath: str | pathlib.Path | None = None, reset: bool = False):
        self.logpath: pathlib.Path = pathlib.Path(
            QStandardPaths.standardLocations(QStandardPaths.DocumentsLocation)[0],
            QCoreApplication.applicationName(),
            "logs",
            "debug.log",
        )
        if logpath:
            self.logpath = pathlib.Path(logpath)
        logging.info("Logpath: %s", self.logpath)

        self.qsettingsformat: QSettings.Format = QSettings.NativeFormat
        if sys.platform == "win32":
            self.qsettingsformat = QSettings.IniFormat

        self.cparser: QSettings = QSettings(
            self.qsettingsformat,
            QSettings.UserScope,
            QCoreApplication.organizationName(),
            QCoreApplication.applicationName(),
        )
        logging.info("configuration: %s", self.cparser.fileName())
        self.loglevel: str = "DEBUG"
        self.interface: str = ""

        self.defaults()
        if reset:
            self.cparser.clear()
            self.save(ParticipantConfig())
        else:
            self.get()

    def setuplogging(self, rotate: bool = False) -> logging.Handler:
        """start logging to the configured file at the configured level"""
        return bootstrap.setuplogging(self.logpath, self.loglevel, rotate=rotate)

    def defaults(self) -> None:
        """default values for things"""
        logging.debug("set defaults")

        settings = QSettings(
            self.qsettingsformat,
            QSettings.SystemScope,
            QCoreApplication.organizationName(),
            QCoreApplication.applicationName(),
        )
        settings.setValue("settings/loglevel", self.loglevel)
        settings.setValue("djlink/interface", self.interface)
        for key, value in asdict(ParticipantConfig()).items():
            settings.setValue(f"djlink/{key}", value)

    def get(self) -> None:
        """refresh values"""
        self.cparser.sync()
        with contextlib.suppress(TypeError):
            self.loglevel = self.cparser.value("settings/loglevel", defaultValue="DEBUG")
        self.interface = self.cparser.value("djlink/interface", defaultValue="") or ""

    def participant_config(self) -> ParticipantConfig:
        """build a ParticipantConfig from the stored settings"""
        self.cparser.sync()
        values = {}
        for field in fields(ParticipantConfig):
            default = getattr(ParticipantConfig, field.name)
            try:
                values[field.name] = self.cparser.value(
                    f"djlink/{field.name}", type=type(default), defaultValue=default
                )
            except TypeError:
                logging.warning("Ignoring unreadable setting djlink/%s", field.name)
                values[field.name] = default
        return ParticipantConfig(**values)

    def save(self, config: ParticipantConfig | None = None) -> None:
        """save the current set"""
        if config:
            for key, value in asdict(config).items():
                self.cparser.setValue(f"djlink/{key}", value)
        self.cparser.setValue("djlink/interface", self.interface)
        self.cparser.setValue("settings/loglevel", self.loglevel)
        self.cparser.setValue("settings/lastsavedate", time.strftime("%Y%m%d%H%M%S"))
        self.cparser.sync()
