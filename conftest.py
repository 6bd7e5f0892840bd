#!/usr/bin/env python3
"""pytest fixtures"""

import contextlib
import logging
import os
import pathlib
import shutil
import sys
import tempfile

import pytest
from PySide6.QtCore import (  # pylint: disable=import-error, no-name-in-module
    QCoreApplication,
    QSettings,
)

import djlink.bootstrap
import djlink.config
import djlink.protocol
import djlink.types
from djlink.network import InterfaceInfo

# DO NOT CHANGE THIS TO BE com.github.djlink
# otherwise your actual settings will disappear!
DOMAIN = "com.github.djlink.testsuite"

LOOPBACK = InterfaceInfo(
    name="lo",
    address="127.0.0.1",
    broadcast="127.0.0.1",
    mac_address="02:00:00:00:00:01",
    netmask="255.0.0.0",
)


def reboot_macosx_prefs():
    """work around Mac OS X's preference caching"""
    if sys.platform == "darwin":
        os.system(f"defaults delete {DOMAIN}")


def _qsettingsformat():
    if sys.platform == "win32":
        return QSettings.IniFormat
    return QSettings.NativeFormat


@pytest.fixture
def getroot(pytestconfig):
    """get the base of the source tree"""
    return pytestconfig.rootpath


@pytest.fixture
def bootstrap():
    """bootstrap a configuration"""
    with contextlib.suppress(PermissionError):  # Windows blows
        with tempfile.TemporaryDirectory(ignore_cleanup_errors=True) as newpath:
            djlink.bootstrap.set_qt_names(domain=DOMAIN, appname="testsuite")
            config = djlink.config.ConfigFile(logpath=pathlib.Path(newpath, "debug.log"))
            config.cparser.sync()
            yield config
            if pathlib.Path(newpath).exists():
                shutil.rmtree(newpath)


@pytest.fixture(autouse=True, scope="function")
def clear_old_testsuite():
    """clear out old testsuite configs"""
    djlink.bootstrap.set_qt_names(domain=DOMAIN, appname="testsuite")
    for scope in (QSettings.SystemScope, QSettings.UserScope):
        config = QSettings(
            _qsettingsformat(),
            scope,
            QCoreApplication.organizationName(),
            QCoreApplication.applicationName(),
        )
        config.clear()
        config.sync()
        filename = pathlib.Path(config.fileName())
        del config
        if scope == QSettings.UserScope and filename.exists():
            filename.unlink()
    reboot_macosx_prefs()
    if filename.exists():
        logging.error("Still exists, wtf?")
    yield filename
    if filename.exists():
        filename.unlink()
    reboot_macosx_prefs()


@pytest.fixture
def loopback():
    """interface details for running a participant on loopback"""
    return LOOPBACK


@pytest.fixture
def loopback_config():
    """participant config that binds ephemeral loopback ports"""
    return djlink.config.ParticipantConfig(
        name="testsuite",
        claim_delay=0.0,
        announce_interval=60.0,
        expiry_interval=60.0,
        bind_address="127.0.0.1",
        broadcast_address="127.0.0.1",
        ephemeral_ports=True,
    )


@pytest.fixture
def keepalive_packet():
    """factory for decoded keep-alive packets"""

    def _make(number, name="CDJ-2000nexus", mac="00:e0:36:aa:bb:01", address="127.0.0.1"):
        fields = djlink.protocol.KeepAliveFields(
            name=name, device_number=number, mac_address=mac, ip_address=address
        )
        return djlink.protocol.decode(djlink.protocol.encode(fields), djlink.types.DISCOVERY_PORT)

    return _make
