"""Logging setup for the media session service and library scanner.

Log records go to a rotating file under the XDG data directory and, for
warnings and errors, to stderr. Set FLOWMEDIA_DEBUG to get debug output.
"""

# ============================================================================
# Standard Library Imports (alphabetical)
# ============================================================================
import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

# ============================================================================
# Third-Party Imports (alphabetical, with version requirements)
# ============================================================================
# None

# ============================================================================
# Local Imports (grouped by package, alphabetical)
# ============================================================================
# None

ROOT_LOGGER_NAME = "flowmedia"


class LinuxLogger:
    """
    File and console logger for flowmedia.

    Supports:
    - File logging to the XDG data directory (rotated at 10MB)
    - Console output for warnings and errors
    - Environment variable control (FLOWMEDIA_DEBUG)
    """

    _instance: Optional["LinuxLogger"] = None
    _initialized: bool = False

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize the logger.

        Args:
            log_dir: Directory for log files (defaults to XDG data dir)
        """
        if LinuxLogger._initialized:
            return

        self.logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.logger.setLevel(
            logging.DEBUG if os.getenv("FLOWMEDIA_DEBUG") else logging.INFO
        )
        LinuxLogger._instance = self

        if self.logger.handlers:
            return

        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s (%(threadName)s): %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

        if log_dir is None:
            xdg_data = os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share")
            log_dir = Path(xdg_data) / ROOT_LOGGER_NAME / "logs"

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / "flowmedia.log", maxBytes=10 * 1024 * 1024, backupCount=5
            )
        except OSError as e:
            # Read-only home (sandboxes, CI): console logging only
            self.logger.warning("Log file unavailable in %s: %s", log_dir, e)
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        LinuxLogger._initialized = True

    @classmethod
    def get_logger(cls, name: str = ROOT_LOGGER_NAME) -> logging.Logger:
        """
        Get a logger instance.

        Module names inside the package ("flowmedia.artwork") map onto the
        same child logger as their short form ("artwork"). Handlers are not
        installed here: module-level loggers exist before the entry point
        knows the log directory, and records reach whatever handlers
        LinuxLogger(log_dir=...) attaches later.

        Args:
            name: Logger name (creates child logger)

        Returns:
            Logger instance
        """
        root = logging.getLogger(ROOT_LOGGER_NAME)
        if name == ROOT_LOGGER_NAME:
            return root
        prefix = ROOT_LOGGER_NAME + "."
        if name.startswith(prefix):
            name = name[len(prefix):]
        return root.getChild(name)

    @classmethod
    def set_level(cls, level: int) -> None:
        """Set logging level for the flowmedia logger tree."""
        if cls._instance is None:
            cls()
        cls._instance.logger.setLevel(level)


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Get a logger instance."""
    return LinuxLogger.get_logger(name)
