#!/usr/bin/env python3
"""bootstrap the engine"""

import logging
import logging.handlers
import pathlib

from PySide6.QtCore import QCoreApplication  # pylint: disable=no-name-in-module

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(process)d %(processName)s/%(threadName)s "
    "%(module)s:%(funcName)s:%(lineno)d %(message)s"
)
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"
LOG_BACKUPS = 10


def set_qt_names(
    app: QCoreApplication | None = None,
    domain: str = "com.github.djlink",
    appname: str = "DJLink",
) -> QCoreApplication:
    """name the Qt application so QSettings finds the right store"""
    app = app or QCoreApplication.instance() or QCoreApplication()
    app.setOrganizationDomain(domain)
    app.setOrganizationName("djlink")
    app.setApplicationName(appname)
    return app


def setuplogging(
    logfile: pathlib.Path | str, loglevel: str = "DEBUG", rotate: bool = False
) -> logging.handlers.RotatingFileHandler:
    """Send log records at ``loglevel`` and above to a rotating ``logfile``.

    With ``rotate`` an existing log is moved aside first so every run starts
    a fresh file. Returns the installed handler.
    """
    logfile = pathlib.Path(logfile)
    level = logging.getLevelName(loglevel.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {loglevel}")

    logfile.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=logfile, backupCount=LOG_BACKUPS, encoding="utf-8", delay=True
    )
    if rotate and logfile.exists():
        try:
            handler.doRollover()
        except OSError as error:
            logging.warning("Could not rotate %s: %s", logfile, error)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level)
    logging.captureWarnings(True)
    logging.info("Logging %s to %s", logging.getLevelName(level), logfile)
    return handler
