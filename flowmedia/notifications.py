"""Persistent playback notification via org.freedesktop.Notifications."""

import dbus
from typing import Callable, Dict, Optional

import gi
gi.require_version('GLib', '2.0')
from gi.repository import GLib

from flowmedia.exceptions import SessionError
from flowmedia.logging import get_logger
from flowmedia.projector import NotificationPayload

logger = get_logger(__name__)

NOTIFICATIONS_SERVICE = 'org.freedesktop.Notifications'
NOTIFICATIONS_PATH = '/org/freedesktop/Notifications'
NOTIFICATIONS_INTERFACE = 'org.freedesktop.Notifications'

# Never expire on its own; the session decides when it goes away
EXPIRE_NEVER = 0


def to_dbus_hints(hints: Dict) -> dbus.Dictionary:
    converted = {}
    for key, value in hints.items():
        if isinstance(value, bool):
            converted[key] = dbus.Boolean(value)
        elif isinstance(value, int):
            converted[key] = dbus.Byte(value)
        else:
            converted[key] = dbus.String(value)
    return dbus.Dictionary(converted, signature='sv')


class DesktopNotifier:
    """
    One updatable notification for the current track.

    Every show() replaces the previous notification in place (replaces_id),
    so the user never sees a stack of them. Action clicks are routed to
    on_action with the action key.
    """

    def __init__(self, bus=None):
        try:
            self.bus = bus or dbus.SessionBus()
            self.proxy = dbus.Interface(
                self.bus.get_object(NOTIFICATIONS_SERVICE, NOTIFICATIONS_PATH),
                NOTIFICATIONS_INTERFACE,
            )
        except dbus.exceptions.DBusException as e:
            raise SessionError(f"Notification service unavailable: {e}") from e

        self.on_action: Optional[Callable[[str], None]] = None
        self._notification_id = 0
        self._signal_receivers = []
        self._setup_signals()

    def _setup_signals(self):
        """Set up D-Bus signals for action clicks and dismissal."""
        try:
            receiver = self.bus.add_signal_receiver(
                self._on_action_invoked,
                dbus_interface=NOTIFICATIONS_INTERFACE,
                signal_name='ActionInvoked',
            )
            self._signal_receivers.append(receiver)

            receiver = self.bus.add_signal_receiver(
                self._on_notification_closed,
                dbus_interface=NOTIFICATIONS_INTERFACE,
                signal_name='NotificationClosed',
            )
            self._signal_receivers.append(receiver)
        except dbus.exceptions.DBusException as e:
            logger.error("Error setting up notification signals: %s", e, exc_info=True)

    def show(self, payload: NotificationPayload):
        """Show or update the notification (runs on the GLib main loop)."""
        GLib.idle_add(self._show, payload)

    def cancel(self):
        GLib.idle_add(self._cancel)

    def _show(self, payload: NotificationPayload):
        try:
            self._notification_id = int(self.proxy.Notify(
                payload.app_name,
                dbus.UInt32(self._notification_id),
                payload.icon,
                payload.summary,
                payload.body,
                dbus.Array(payload.flat_actions(), signature='s'),
                to_dbus_hints(payload.hints()),
                dbus.Int32(EXPIRE_NEVER),
            ))
        except dbus.exceptions.DBusException as e:
            logger.error("Failed to show notification: %s", e)
        return False

    def _cancel(self):
        if not self._notification_id:
            return False
        try:
            self.proxy.CloseNotification(dbus.UInt32(self._notification_id))
        except dbus.exceptions.DBusException as e:
            logger.debug("Failed to close notification: %s", e)
        finally:
            self._notification_id = 0
        return False

    def _on_action_invoked(self, notification_id, action_key):
        if int(notification_id) != self._notification_id or not self._notification_id:
            return
        logger.debug("Notification action: %s", action_key)
        if self.on_action:
            self.on_action(str(action_key))

    def _on_notification_closed(self, notification_id, reason):
        if int(notification_id) == self._notification_id:
            # Dismissed by the user; the next show() creates a fresh one
            self._notification_id = 0

    def cleanup(self):
        self._cancel()
        for receiver in self._signal_receivers:
            receiver.remove()
        self._signal_receivers.clear()
