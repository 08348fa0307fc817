"""Now-playing state and the state machine that applies commands to it.

The machine is single-owner: it is driven by exactly one thread (the command
processor in now_playing.py) and never does I/O itself. Each command returns
a list of effects that the owner carries out in order.
"""

# ============================================================================
# Standard Library Imports (alphabetical)
# ============================================================================
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

# ============================================================================
# Local Imports (grouped by package, alphabetical)
# ============================================================================
from flowmedia.artwork import Artwork, art_key
from flowmedia.events import EventBus, seek_event
from flowmedia.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TITLE = "Flow"


class SessionStatus(Enum):
    """Lifecycle of the media session."""

    STOPPED = "stopped"  # No session, no notification
    ACTIVE = "active"  # Session and notification live; is_playing toggles inside


@dataclass
class PlaybackState:
    title: str = DEFAULT_TITLE
    artist: str = ""
    album: str = ""
    is_playing: bool = False
    position_ms: int = 0
    duration_ms: int = 0
    artwork: Optional[Artwork] = None
    last_art_key: str = ""
    art_generation: int = 0
    status: SessionStatus = SessionStatus.STOPPED

    @property
    def is_active(self) -> bool:
        return self.status is SessionStatus.ACTIVE


# ============================================================================
# Commands
# ============================================================================

@dataclass(frozen=True)
class Update:
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    cover_locator: Optional[str] = None
    track_locator: Optional[str] = None
    is_playing: bool = False
    duration_ms: int = 0


@dataclass(frozen=True)
class Play:
    pass


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Previous:
    pass


@dataclass(frozen=True)
class SeekTo:
    position_ms: int


@dataclass(frozen=True)
class SetPlaybackFlag:
    is_playing: bool


@dataclass(frozen=True)
class UpdatePosition:
    position_ms: int
    duration_ms: int


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class ArtworkReady:
    """Result of a background artwork resolution."""

    generation: int
    artwork: Optional[Artwork]


@dataclass(frozen=True)
class AudioRouteChanged:
    connected: bool


Command = Union[Update, Play, Pause, Next, Previous, SeekTo, SetPlaybackFlag,
                UpdatePosition, Stop, ArtworkReady, AudioRouteChanged]


# ============================================================================
# Effects
# ============================================================================

@dataclass(frozen=True)
class Activate:
    """Acquire the session and start listening for audio-route changes."""


@dataclass(frozen=True)
class Render:
    session: bool = True
    notification: bool = True


@dataclass(frozen=True)
class Emit:
    event: str


@dataclass(frozen=True)
class ResolveArtwork:
    generation: int
    cover_locator: Optional[str]
    track_locator: Optional[str]


@dataclass(frozen=True)
class Teardown:
    """Release the session, close the notification, stop route listening."""


Effect = Union[Activate, Render, Emit, ResolveArtwork, Teardown]

FULL_RENDER = Render()
SESSION_RENDER = Render(session=True, notification=False)


class PlaybackStateMachine:
    """Applies commands to the owned PlaybackState."""

    def __init__(self, state: Optional[PlaybackState] = None):
        self.state = state or PlaybackState()

    def apply(self, command: Command) -> List[Effect]:
        handler = getattr(self, f"_on_{type(command).__name__}", None)
        if handler is None:
            logger.warning("Ignoring unknown command %r", command)
            return []
        effects = handler(command)
        if not self.state.is_active and not isinstance(command, Stop):
            # Nothing is projected while stopped
            return []
        return effects

    def _on_Update(self, cmd: Update) -> List[Effect]:
        state = self.state
        effects: List[Effect] = []
        if not state.is_active:
            state.status = SessionStatus.ACTIVE
            effects.append(Activate())

        state.title = cmd.title if cmd.title is not None else DEFAULT_TITLE
        state.artist = cmd.artist or ""
        state.album = cmd.album or ""
        state.is_playing = cmd.is_playing
        state.duration_ms = max(0, int(cmd.duration_ms))

        key = art_key(cmd.cover_locator, cmd.track_locator)
        if key != state.last_art_key:
            state.last_art_key = key
            state.art_generation += 1
            state.artwork = None
            # Render first: art lookup may block for a while
            effects.append(FULL_RENDER)
            effects.append(ResolveArtwork(state.art_generation, cmd.cover_locator, cmd.track_locator))
        else:
            effects.append(FULL_RENDER)
        return effects

    def _on_Play(self, cmd: Play) -> List[Effect]:
        self.state.is_playing = True
        return [FULL_RENDER, Emit(EventBus.PLAY)]

    def _on_Pause(self, cmd: Pause) -> List[Effect]:
        self.state.is_playing = False
        return [FULL_RENDER, Emit(EventBus.PAUSE)]

    def _on_Next(self, cmd: Next) -> List[Effect]:
        # The app answers with an Update for the new track
        return [Emit(EventBus.NEXT)]

    def _on_Previous(self, cmd: Previous) -> List[Effect]:
        return [Emit(EventBus.PREV)]

    def _on_SeekTo(self, cmd: SeekTo) -> List[Effect]:
        self.state.position_ms = max(0, int(cmd.position_ms))
        return [SESSION_RENDER, Emit(seek_event(self.state.position_ms))]

    def _on_SetPlaybackFlag(self, cmd: SetPlaybackFlag) -> List[Effect]:
        self.state.is_playing = cmd.is_playing
        return [FULL_RENDER]

    def _on_UpdatePosition(self, cmd: UpdatePosition) -> List[Effect]:
        self.state.position_ms = max(0, int(cmd.position_ms))
        self.state.duration_ms = max(0, int(cmd.duration_ms))
        return [SESSION_RENDER]

    def _on_Stop(self, cmd: Stop) -> List[Effect]:
        if not self.state.is_active:
            return []
        self.state.status = SessionStatus.STOPPED
        self.state.is_playing = False
        return [Teardown()]

    def _on_ArtworkReady(self, cmd: ArtworkReady) -> List[Effect]:
        if cmd.generation != self.state.art_generation:
            logger.debug("Discarding stale artwork (generation %d, current %d)",
                         cmd.generation, self.state.art_generation)
            return []
        # Kept while stopped: a restart with the same art key skips resolution
        self.state.artwork = cmd.artwork
        return [FULL_RENDER]

    def _on_AudioRouteChanged(self, cmd: AudioRouteChanged) -> List[Effect]:
        return [Emit(EventBus.HEADSET_CONNECTED if cmd.connected
                     else EventBus.HEADSET_DISCONNECTED)]
