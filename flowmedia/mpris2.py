"""MPRIS2 (Media Player Remote Interfacing Specification) D-Bus interface.

This module publishes the now-playing session for desktop integration:
- Media key and headset button support (PlayPause, Next, Previous)
- Shell media controls (GNOME, KDE) showing title, artist and cover
- Remote control via D-Bus (playerctl and friends)

The exported object is a passive mirror of the last published
SessionDescriptor; every control request is forwarded to a transport
callback and never changes the exported state directly.
"""

import dbus
import dbus.service
from dbus.mainloop.glib import DBusGMainLoop
from typing import Any, Callable, Dict, List, Optional

import gi
gi.require_version('GLib', '2.0')
from gi.repository import GLib

from flowmedia.exceptions import SessionError
from flowmedia.logging import get_logger
from flowmedia.projector import SessionDescriptor

logger = get_logger(__name__)


# MPRIS2 interfaces
MPRIS2_OBJECT_PATH = '/org/mpris/MediaPlayer2'
MPRIS2_ROOT_INTERFACE = 'org.mpris.MediaPlayer2'
MPRIS2_PLAYER_INTERFACE = 'org.mpris.MediaPlayer2.Player'

# Position changes continuously and is never announced via PropertiesChanged
UNANNOUNCED_PROPERTIES = ('Position',)


def to_dbus_metadata(metadata: Dict[str, Any]) -> dbus.Dictionary:
    """Convert rendered metadata into the a{sv} MPRIS clients expect."""
    converted = {}
    for key, value in metadata.items():
        if key == 'mpris:trackid':
            converted[key] = dbus.ObjectPath(value)
        elif key == 'mpris:length':
            converted[key] = dbus.Int64(value)
        elif isinstance(value, list):
            converted[key] = dbus.Array(value, signature='s')
        else:
            converted[key] = dbus.String(value)
    return dbus.Dictionary(converted, signature='sv')


def to_dbus_properties(descriptor: SessionDescriptor) -> Dict[str, Any]:
    props = descriptor.properties()
    return {
        'PlaybackStatus': dbus.String(props['PlaybackStatus']),
        'Metadata': to_dbus_metadata(props['Metadata']),
        'Position': dbus.Int64(props['Position']),
        'Rate': dbus.Double(props['Rate']),
        'MinimumRate': dbus.Double(1.0),
        'MaximumRate': dbus.Double(1.0),
        'Volume': dbus.Double(1.0),
        'CanPlay': dbus.Boolean(props['CanPlay']),
        'CanPause': dbus.Boolean(props['CanPause']),
        'CanGoNext': dbus.Boolean(props['CanGoNext']),
        'CanGoPrevious': dbus.Boolean(props['CanGoPrevious']),
        'CanSeek': dbus.Boolean(props['CanSeek']),
        'CanControl': dbus.Boolean(props['CanControl']),
    }


class MPRIS2Service(dbus.service.Object):
    """Root and Player interfaces on /org/mpris/MediaPlayer2."""

    def __init__(self, bus, identity: str, desktop_entry: str):
        super().__init__(bus, MPRIS2_OBJECT_PATH)
        self._root_props = {
            'CanQuit': dbus.Boolean(False),
            'CanRaise': dbus.Boolean(True),
            'HasTrackList': dbus.Boolean(False),
            'Identity': dbus.String(identity),
            'DesktopEntry': dbus.String(desktop_entry),
            'SupportedUriSchemes': dbus.Array(['file'], signature='s'),
            'SupportedMimeTypes': dbus.Array(
                ['audio/mpeg', 'audio/flac', 'audio/ogg', 'audio/mp4'], signature='s'
            ),
        }
        self._player_props: Dict[str, Any] = {}

        # Callbacks to control playback
        self.on_play: Optional[Callable[[], None]] = None
        self.on_pause: Optional[Callable[[], None]] = None
        self.on_stop: Optional[Callable[[], None]] = None
        self.on_next: Optional[Callable[[], None]] = None
        self.on_previous: Optional[Callable[[], None]] = None
        self.on_seek_to: Optional[Callable[[int], None]] = None
        self.on_raise: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------------
    # org.mpris.MediaPlayer2
    # ------------------------------------------------------------------------

    @dbus.service.method(MPRIS2_ROOT_INTERFACE, in_signature='', out_signature='')
    def Raise(self):
        """Raise the application window."""
        logger.debug("MPRIS2: Raise requested")
        if self.on_raise:
            self.on_raise()

    @dbus.service.method(MPRIS2_ROOT_INTERFACE, in_signature='', out_signature='')
    def Quit(self):
        # CanQuit is false: the host application owns its lifetime
        logger.debug("MPRIS2: Quit ignored")

    # ------------------------------------------------------------------------
    # org.mpris.MediaPlayer2.Player
    # ------------------------------------------------------------------------

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='', out_signature='')
    def Next(self):
        """Skip to next track."""
        logger.info("MPRIS2: Next requested")
        if self.on_next:
            self.on_next()

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='', out_signature='')
    def Previous(self):
        """Skip to previous track."""
        logger.info("MPRIS2: Previous requested")
        if self.on_previous:
            self.on_previous()

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='', out_signature='')
    def Pause(self):
        """Pause playback."""
        logger.info("MPRIS2: Pause requested")
        if self.on_pause:
            self.on_pause()

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='', out_signature='')
    def PlayPause(self):
        """Toggle play/pause."""
        logger.info("MPRIS2: PlayPause requested")
        if self._player_props.get('PlaybackStatus') == 'Playing':
            if self.on_pause:
                self.on_pause()
        else:
            if self.on_play:
                self.on_play()

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='', out_signature='')
    def Stop(self):
        """Stop playback."""
        logger.info("MPRIS2: Stop requested")
        if self.on_stop:
            self.on_stop()

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='', out_signature='')
    def Play(self):
        """Start or resume playback."""
        logger.info("MPRIS2: Play requested")
        if self.on_play:
            self.on_play()

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='x', out_signature='')
    def Seek(self, offset: int):
        """Seek forward or backward by offset microseconds."""
        logger.debug("MPRIS2: Seek requested: %d microseconds", offset)
        current = int(self._player_props.get('Position', 0))
        self._seek_to_us(max(0, current + int(offset)))

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='ox', out_signature='')
    def SetPosition(self, track_id: str, position: int):
        """Set position in microseconds for a specific track."""
        logger.debug("MPRIS2: SetPosition requested: track_id=%s, position=%d", track_id, position)
        metadata = self._player_props.get('Metadata', {})
        if str(metadata.get('mpris:trackid', '')) != str(track_id):
            # Stale request for a track that is no longer current
            return
        if position < 0:
            return
        self._seek_to_us(int(position))

    @dbus.service.method(MPRIS2_PLAYER_INTERFACE, in_signature='s', out_signature='')
    def OpenUri(self, uri: str):
        logger.debug("MPRIS2: OpenUri not supported: %s", uri)

    @dbus.service.signal(MPRIS2_PLAYER_INTERFACE, signature='x')
    def Seeked(self, position: int):
        """Signal emitted when position jumps."""
        pass

    def _seek_to_us(self, position_us: int):
        if self.on_seek_to:
            self.on_seek_to(position_us // 1000)
        self.Seeked(dbus.Int64(position_us))

    # ------------------------------------------------------------------------
    # org.freedesktop.DBus.Properties
    # ------------------------------------------------------------------------

    def _interface_props(self, interface: str) -> Dict[str, Any]:
        if interface == MPRIS2_ROOT_INTERFACE:
            return self._root_props
        if interface == MPRIS2_PLAYER_INTERFACE:
            return self._player_props
        raise dbus.exceptions.DBusException(
            f"No such interface {interface}",
            name='org.freedesktop.DBus.Error.UnknownInterface',
        )

    @dbus.service.method(dbus.PROPERTIES_IFACE, in_signature='ss', out_signature='v')
    def Get(self, interface: str, prop: str):
        props = self._interface_props(interface)
        if prop not in props:
            raise dbus.exceptions.DBusException(
                f"No such property {prop}",
                name='org.freedesktop.DBus.Error.UnknownProperty',
            )
        return props[prop]

    @dbus.service.method(dbus.PROPERTIES_IFACE, in_signature='s', out_signature='a{sv}')
    def GetAll(self, interface: str):
        return dbus.Dictionary(self._interface_props(interface), signature='sv')

    @dbus.service.method(dbus.PROPERTIES_IFACE, in_signature='ssv', out_signature='')
    def Set(self, interface: str, prop: str, value):
        # Volume and Rate are fixed; nothing here is writable
        raise dbus.exceptions.DBusException(
            f"Property {prop} is read-only",
            name='org.freedesktop.DBus.Error.PropertyReadOnly',
        )

    @dbus.service.signal(dbus.PROPERTIES_IFACE, signature='sa{sv}as')
    def PropertiesChanged(self, interface: str, changed: Dict[str, Any], invalidated: List[str]):
        """Signal emitted when properties change."""
        pass

    def apply(self, descriptor: SessionDescriptor):
        """Mirror descriptor and announce what changed."""
        new_props = to_dbus_properties(descriptor)
        changed = {
            key: value for key, value in new_props.items()
            if key not in UNANNOUNCED_PROPERTIES and self._player_props.get(key) != value
        }
        self._player_props = new_props
        if changed:
            self.PropertiesChanged(MPRIS2_PLAYER_INTERFACE,
                                   dbus.Dictionary(changed, signature='sv'), [])


class MPRIS2Manager:
    """Owns the bus name and the exported MPRIS2 object.

    activate(), publish() and release() may be called from any thread; the
    D-Bus work itself always runs on the GLib main loop.
    """

    def __init__(self, bus_name: str, identity: str = "Flow", desktop_entry: str = "flow"):
        """Initialize MPRIS2 manager."""
        DBusGMainLoop(set_as_default=True)
        self.bus_name = bus_name
        self.identity = identity
        self.desktop_entry = desktop_entry
        self.service: Optional[MPRIS2Service] = None
        self._callbacks: Dict[str, Optional[Callable]] = {}
        try:
            self.bus = dbus.SessionBus()
        except dbus.exceptions.DBusException as e:
            raise SessionError(f"Session bus unavailable: {e}") from e

    def set_transport_callbacks(self, on_play=None, on_pause=None, on_stop=None,
                                on_next=None, on_previous=None, on_seek_to=None,
                                on_raise=None):
        """Set playback control callbacks."""
        self._callbacks = {
            'on_play': on_play,
            'on_pause': on_pause,
            'on_stop': on_stop,
            'on_next': on_next,
            'on_previous': on_previous,
            'on_seek_to': on_seek_to,
            'on_raise': on_raise,
        }
        if self.service:
            self._bind_callbacks(self.service)

    def _bind_callbacks(self, service: MPRIS2Service):
        for name, callback in self._callbacks.items():
            setattr(service, name, callback)

    def activate(self):
        """Acquire the bus name and export the player."""
        GLib.idle_add(self._activate)

    def publish(self, descriptor: SessionDescriptor):
        """Mirror a rendered session descriptor."""
        GLib.idle_add(self._publish, descriptor)

    def release(self):
        """Unexport the player and release the bus name."""
        GLib.idle_add(self._release)

    def _activate(self):
        if self.service is not None:
            return False
        try:
            reply = self.bus.request_name(self.bus_name, dbus.bus.NAME_FLAG_DO_NOT_QUEUE)
            if reply != dbus.bus.REQUEST_NAME_REPLY_PRIMARY_OWNER:
                logger.warning("MPRIS2: Could not acquire bus name %s (in use)", self.bus_name)
                return False
            self.service = MPRIS2Service(self.bus, self.identity, self.desktop_entry)
            self._bind_callbacks(self.service)
            logger.info("MPRIS2: Acquired bus name %s", self.bus_name)
        except dbus.exceptions.DBusException as e:
            logger.error("MPRIS2: Failed to register: %s", e, exc_info=True)
        return False

    def _publish(self, descriptor: SessionDescriptor):
        if self.service is None:
            logger.debug("MPRIS2: Publish without an exported player")
            return False
        try:
            self.service.apply(descriptor)
        except dbus.exceptions.DBusException as e:
            logger.error("MPRIS2: Failed to publish state: %s", e)
        return False

    def _release(self):
        if self.service is None:
            return False
        try:
            self.service.remove_from_connection()
            self.bus.release_name(self.bus_name)
            logger.info("MPRIS2: Released %s", self.bus_name)
        except dbus.exceptions.DBusException as e:
            logger.error("MPRIS2: Error during cleanup: %s", e, exc_info=True)
        finally:
            self.service = None
        return False
