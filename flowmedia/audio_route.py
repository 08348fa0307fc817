"""Wired headset detection by polling PulseAudio/PipeWire sink ports."""

import re
import shutil
import subprocess
from typing import Callable, Optional

import gi
gi.require_version('GLib', '2.0')
from gi.repository import GLib

from flowmedia.logging import get_logger

logger = get_logger(__name__)

# "analog-output-headphones: Headphones (type: Headphones, priority: 9900, ..., available)"
_PORT_LINE = re.compile(r'^\s*(?P<name>[^:]+):\s.*\((?P<details>[^)]*)\)\s*$')
_HEADSET_PORT = re.compile(r'headphone|headset', re.IGNORECASE)


def parse_headset_state(pactl_output: str) -> bool:
    """
    Whether any sink reports a plugged-in headphone or headset port.

    Args:
        pactl_output: Output of `pactl list sinks`

    Returns:
        True when a headphone/headset port is marked available. Ports whose
        availability is unknown count as unplugged.
    """
    in_ports = False
    for line in pactl_output.splitlines():
        stripped = line.strip()
        if stripped.startswith('Ports:'):
            in_ports = True
            continue
        if in_ports and (stripped.startswith('Active Port:') or stripped.startswith('Sink #')):
            in_ports = False
            continue
        if not in_ports:
            continue
        match = _PORT_LINE.match(line)
        if not match or not _HEADSET_PORT.search(match.group('name')):
            continue
        availability = match.group('details').rsplit(',', 1)[-1].strip()
        if availability == 'available':
            return True
    return False


class AudioRouteMonitor:
    """Reports headset plug and unplug transitions.

    Polls `pactl list sinks` on the GLib main loop. The state found when
    monitoring starts is only a baseline and is not reported.
    """

    def __init__(self, interval_ms: int = 1000,
                 on_route_changed: Optional[Callable[[bool], None]] = None):
        self._pactl_path: Optional[str] = shutil.which("pactl")
        self.on_route_changed = on_route_changed
        self.interval_ms = interval_ms
        self._connected: Optional[bool] = None
        self._monitoring_timeout_id = None

    @property
    def available(self) -> bool:
        return self._pactl_path is not None

    def read_state(self) -> Optional[bool]:
        """Current headset state, or None if it cannot be read."""
        if not self._pactl_path:
            return None
        try:
            result = subprocess.run(
                [self._pactl_path, "list", "sinks"],
                capture_output=True,
                text=True,
                timeout=2
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("pactl failed: %s", e)
            return None
        if result.returncode != 0:
            return None
        return parse_headset_state(result.stdout)

    def start(self):
        """Schedule polling; a no-op when already running or without pactl.

        Never runs pactl itself, so it is safe to call from any thread. The
        first poll on the main loop records the baseline.
        """
        if self._monitoring_timeout_id is not None:
            return
        if not self.available:
            logger.info("pactl not found, headset detection disabled")
            return
        self._connected = None
        self._monitoring_timeout_id = GLib.timeout_add(self.interval_ms, self.poll)

    def poll(self) -> bool:
        """Check once and report a transition; returns True to keep polling.

        The first readable state after start() is the baseline.
        """
        current = self.read_state()
        if current is None:
            return True
        if self._connected is not None and current != self._connected:
            logger.info("Headset %s", "connected" if current else "disconnected")
            if self.on_route_changed:
                self.on_route_changed(current)
        self._connected = current
        return True

    def stop(self):
        """Stop polling for route changes."""
        if self._monitoring_timeout_id is not None:
            GLib.source_remove(self._monitoring_timeout_id)
            self._monitoring_timeout_id = None
        self._connected = None
