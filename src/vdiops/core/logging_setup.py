"""
Logging configuration shared by every runbook.

Console output uses the usual basicConfig format. On Windows the records are
also written to the Application event log so logon/logoff scripts leave a
trace that can be collected centrally.
"""

import logging
import logging.handlers
import sys
from typing import Optional

from vdiops.core.config import Settings, settings as default_settings

LOG_FORMAT = "%(levelname)s %(name)s - %(message)s"


def build_event_log_handler(source: str) -> Optional[logging.Handler]:
    """
    Create an event log handler for ``source``.

    Returns None when not running on Windows. NTEventLogHandler needs
    pywin32; without it the handler only prints a warning and drops records.
    """
    if sys.platform != "win32":
        return None
    handler = logging.handlers.NTEventLogHandler(source, logtype="Application")
    handler.setLevel(logging.INFO)
    return handler


def configure_logging(settings: Optional[Settings] = None, verbose: bool = False) -> None:
    settings = settings or default_settings
    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(level=level, format=LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(level)

    if settings.event_log_enabled:
        already_added = any(
            isinstance(h, logging.handlers.NTEventLogHandler) for h in root.handlers
        )
        handler = None if already_added else build_event_log_handler(settings.event_log_source)
        if handler is not None:
            root.addHandler(handler)

    # urllib3 logs every connection at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)
