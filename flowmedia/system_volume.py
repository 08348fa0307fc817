"""System volume readout and the desktop volume OSD, via PulseAudio or ALSA."""

import subprocess
import shutil
from typing import Optional

import dbus

from flowmedia.exceptions import SessionError
from flowmedia.logging import get_logger

logger = get_logger(__name__)

SHELL_SERVICE = 'org.gnome.Shell'
SHELL_PATH = '/org/gnome/Shell'
SHELL_INTERFACE = 'org.gnome.Shell'


def parse_pactl_volume(output: str) -> Optional[float]:
    """Volume from `pactl get-sink-volume` output, 0.0 to 1.0 (or above when boosted)."""
    # Parse output like "Volume: front-left: 32768 /  50% / -18.06 dB"
    for line in output.splitlines():
        if "Volume:" in line and "%" in line:
            parts = line.split("%")
            try:
                return int(parts[0].split()[-1]) / 100.0
            except (IndexError, ValueError):
                continue
    return None


def parse_amixer_volume(output: str) -> Optional[float]:
    # Parse output like "Front Left: Playback 32768 [50%] [on]"
    for line in output.splitlines():
        start = line.find("[")
        end = line.find("%", start)
        if start != -1 and end != -1:
            try:
                return int(line[start + 1:end]) / 100.0
            except ValueError:
                continue
    return None


class SystemVolume:
    """Reads system volume via PulseAudio or ALSA and shows the volume OSD."""

    def __init__(self, bus=None):
        self._pactl_path: Optional[str] = shutil.which("pactl")
        self._amixer_path: Optional[str] = shutil.which("amixer")
        self._bus = bus

    @property
    def available(self) -> bool:
        return self._pactl_path is not None or self._amixer_path is not None

    def get_volume(self) -> Optional[float]:
        """Get current system volume (0.0 to 1.0), or None if unreadable."""
        if self._pactl_path:
            return self._run(parse_pactl_volume, [self._pactl_path, "get-sink-volume", "@DEFAULT_SINK@"])
        elif self._amixer_path:
            return self._run(parse_amixer_volume, [self._amixer_path, "get", "Master"])
        return None

    def _run(self, parse, command) -> Optional[float]:
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=2
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("%s failed: %s", command[0], e)
            return None
        if result.returncode != 0:
            return None
        return parse(result.stdout)

    def show_volume_ui(self) -> float:
        """
        Show the desktop's volume OSD at the current level.

        Returns:
            The level shown (0.0 to 1.0)

        Raises:
            SessionError: No volume backend, or the shell refused the OSD
        """
        if not self.available:
            raise SessionError("Audio Service not available")
        level = self.get_volume()
        if level is None:
            raise SessionError("Audio Service not available")
        level = max(0.0, min(1.0, level))

        try:
            bus = self._bus or dbus.SessionBus()
            shell = dbus.Interface(bus.get_object(SHELL_SERVICE, SHELL_PATH), SHELL_INTERFACE)
            shell.ShowOSD(dbus.Dictionary({
                'icon': dbus.String(_volume_icon(level)),
                'level': dbus.Double(level),
            }, signature='sv'))
        except dbus.exceptions.DBusException as e:
            raise SessionError(f"Volume UI not available: {e.get_dbus_message()}") from e

        logger.debug("Volume OSD shown at %.0f%%", level * 100)
        return level


def _volume_icon(level: float) -> str:
    if level <= 0.0:
        return 'audio-volume-muted-symbolic'
    if level < 0.34:
        return 'audio-volume-low-symbolic'
    if level < 0.67:
        return 'audio-volume-medium-symbolic'
    return 'audio-volume-high-symbolic'
