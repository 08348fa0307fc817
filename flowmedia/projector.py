"""Projection of the now-playing state onto the session and the notification.

Both renderers are pure: the same state always yields an equal result, so a
publisher can re-apply a render at any time without side effects beyond the
update itself. Values are plain Python types; the D-Bus layer converts them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from flowmedia.metadata import stable_hash, path_to_uri
from flowmedia.playback_state import PlaybackState

TRACK_ID_PREFIX = "/org/mpris/MediaPlayer2/Track"

STATUS_PLAYING = "Playing"
STATUS_PAUSED = "Paused"

DEFAULT_APP_NAME = "Flow Playback"
NOTIFICATION_CATEGORY = "x-gnome.music"
URGENCY_LOW = 0


@dataclass(frozen=True)
class ActionTargets:
    """Action keys a transport control resolves to."""

    play: str = "play"
    pause: str = "pause"
    next: str = "next"
    previous: str = "previous"
    open: str = "default"


@dataclass(frozen=True)
class SessionDescriptor:
    """What external controllers see: MPRIS Player properties."""

    playback_status: str
    metadata: Dict[str, Any]
    position_us: int
    rate: float
    can_play: bool = True
    can_pause: bool = True
    can_go_next: bool = True
    can_go_previous: bool = True
    can_seek: bool = True
    can_control: bool = True

    def properties(self) -> Dict[str, Any]:
        """Player interface properties keyed by their D-Bus names."""
        return {
            'PlaybackStatus': self.playback_status,
            'Metadata': self.metadata,
            'Position': self.position_us,
            'Rate': self.rate,
            'CanPlay': self.can_play,
            'CanPause': self.can_pause,
            'CanGoNext': self.can_go_next,
            'CanGoPrevious': self.can_go_previous,
            'CanSeek': self.can_seek,
            'CanControl': self.can_control,
        }


@dataclass(frozen=True)
class NotificationPayload:
    app_name: str
    summary: str
    body: str
    actions: List[Tuple[str, str]] = field(default_factory=list)
    default_action: str = ""
    resident: bool = False
    image_path: Optional[str] = None
    icon: str = "audio-x-generic"

    def flat_actions(self) -> List[str]:
        """Actions as the [key, label, key, label, ...] list Notify expects."""
        flat: List[str] = []
        for key, label in self.actions:
            flat.extend((key, label))
        return flat

    def hints(self) -> Dict[str, Any]:
        hints: Dict[str, Any] = {
            'urgency': URGENCY_LOW,
            'category': NOTIFICATION_CATEGORY,
            'resident': self.resident,
            'transient': not self.resident,
        }
        if self.image_path:
            hints['image-path'] = self.image_path
        return hints


def track_object_path(state: PlaybackState) -> str:
    """Object path identifying the current track for MPRIS clients."""
    identity = f"{state.title}|{state.artist}|{state.album}|{state.last_art_key}"
    return f"{TRACK_ID_PREFIX}/{stable_hash(identity)}"


def render_session(state: PlaybackState, targets: ActionTargets) -> SessionDescriptor:
    """
    Build the session descriptor for state.

    Args:
        state: Current now-playing state
        targets: Transport action keys (the session maps every control)

    Returns:
        SessionDescriptor with MPRIS metadata, status and capabilities
    """
    metadata: Dict[str, Any] = {
        'mpris:trackid': track_object_path(state),
        'xesam:title': state.title,
        'xesam:artist': [state.artist] if state.artist else [],
        'xesam:album': state.album,
        'mpris:length': state.duration_ms * 1000,
    }
    art_path = state.artwork.path if state.artwork is not None else None
    if art_path:
        metadata['mpris:artUrl'] = path_to_uri(art_path)

    return SessionDescriptor(
        playback_status=STATUS_PLAYING if state.is_playing else STATUS_PAUSED,
        metadata=metadata,
        position_us=state.position_ms * 1000,
        rate=1.0 if state.is_playing else 0.0,
    )


def render_notification(state: PlaybackState, targets: ActionTargets,
                        app_name: str = DEFAULT_APP_NAME) -> NotificationPayload:
    """Build the persistent playback notification for state.

    Compact order is previous, play/pause, next; the middle action shows
    pause while playing and play while paused.
    """
    if state.is_playing:
        toggle = (targets.pause, "Pause")
    else:
        toggle = (targets.play, "Play")

    body = state.artist
    if state.album:
        body = f"{body}\n{state.album}" if body else state.album

    image_path = state.artwork.path if state.artwork is not None else None

    return NotificationPayload(
        app_name=app_name,
        summary=state.title,
        body=body,
        actions=[
            (targets.previous, "Previous"),
            toggle,
            (targets.next, "Next"),
            (targets.open, "Open"),
        ],
        default_action=targets.open,
        resident=state.is_playing,
        image_path=image_path,
    )
