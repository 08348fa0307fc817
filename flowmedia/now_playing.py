"""Now-playing coordinator: serializes commands and carries out their effects.

All inbound calls (application pushes, MPRIS2 controls, notification
buttons, headset changes, finished artwork lookups) become commands on one
queue. A single thread applies them to the state machine in arrival order and
then performs the returned effects, so the state itself never needs a lock.
"""

import queue
import threading
from concurrent.futures import Executor
from typing import Any, Callable, List, Optional

from flowmedia.artwork import ArtworkResolver
from flowmedia.events import EventBus
from flowmedia.exceptions import SessionError
from flowmedia.logging import get_logger
from flowmedia.playback_state import (
    Activate,
    ArtworkReady,
    AudioRouteChanged,
    Command,
    Effect,
    Emit,
    Next,
    Pause,
    Play,
    PlaybackState,
    PlaybackStateMachine,
    Previous,
    Render,
    ResolveArtwork,
    SeekTo,
    SetPlaybackFlag,
    Stop,
    Teardown,
    Update,
    UpdatePosition,
)
from flowmedia.projector import (
    DEFAULT_APP_NAME,
    ActionTargets,
    render_notification,
    render_session,
)

logger = get_logger(__name__)


def seconds_to_millis(seconds: Optional[float]) -> int:
    """Milliseconds from the application's float seconds, truncating."""
    if seconds is None:
        return 0
    try:
        return max(0, int(float(seconds) * 1000))
    except (TypeError, ValueError):
        return 0


class _Barrier:
    def __init__(self):
        self.done = threading.Event()


_SHUTDOWN = object()


class CommandProcessor:
    """Single consumer thread applying commands to a PlaybackStateMachine."""

    def __init__(self, machine: PlaybackStateMachine,
                 handle_effect: Callable[[Effect], None]):
        self.machine = machine
        self._handle_effect = handle_effect
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="now-playing", daemon=True)
        self._thread.start()

    def submit(self, command: Command) -> None:
        self._queue.put(command)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every command submitted so far has been applied."""
        barrier = _Barrier()
        self._queue.put(barrier)
        return barrier.done.wait(timeout)

    def shutdown(self, timeout: Optional[float] = None) -> None:
        self._queue.put(_SHUTDOWN)
        self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _SHUTDOWN:
                break
            if isinstance(item, _Barrier):
                item.done.set()
                continue
            self._process(item)

    def _process(self, command: Command) -> None:
        try:
            effects = self.machine.apply(command)
        except Exception as e:
            logger.error("Failed to apply %r: %s", command, e, exc_info=True)
            return
        for effect in effects:
            try:
                self._handle_effect(effect)
            except Exception as e:
                # A failing publisher must not stop the command loop
                logger.error("Effect %r failed: %s", effect, e, exc_info=True)


class NowPlayingService:
    """
    Keeps the media session, the notification and the application in sync.

    Collaborators are injected so the service runs the same against D-Bus
    publishers on a desktop and against fakes in tests:

    - session: activate(), publish(SessionDescriptor), release(),
      set_transport_callbacks(...)
    - notifier: show(NotificationPayload), cancel(), on_action attribute
    - route_monitor: start(), stop(), on_route_changed attribute
    - volume: show_volume_ui()
    """

    def __init__(
        self,
        session,
        notifier,
        resolver: ArtworkResolver,
        executor: Executor,
        event_bus: Optional[EventBus] = None,
        route_monitor=None,
        volume=None,
        targets: Optional[ActionTargets] = None,
        app_name: str = DEFAULT_APP_NAME,
    ):
        self.session = session
        self.notifier = notifier
        self.resolver = resolver
        self.executor = executor
        self.event_bus = event_bus or EventBus()
        self.route_monitor = route_monitor
        self.volume = volume
        self.targets = targets or ActionTargets()
        self.app_name = app_name
        self.on_open: Optional[Callable[[], None]] = None

        self.machine = PlaybackStateMachine()
        self.processor = CommandProcessor(self.machine, self._handle_effect)

        self._wire_transport()

    @property
    def state(self) -> PlaybackState:
        """The live state; read it only after flush() in tests and tools."""
        return self.machine.state

    def _wire_transport(self):
        if self.session is not None:
            self.session.set_transport_callbacks(
                on_play=self.play,
                on_pause=self.pause,
                on_stop=self.stop_session,
                on_next=self.next,
                on_previous=self.previous,
                on_seek_to=self.seek_to,
                on_raise=self._open,
            )
        if self.notifier is not None:
            self.notifier.on_action = self.handle_notification_action
        if self.route_monitor is not None:
            self.route_monitor.on_route_changed = self.audio_route_changed

    # ------------------------------------------------------------------------
    # Application commands
    # ------------------------------------------------------------------------

    def update_now_playing(self, title: Optional[str] = None, artist: Optional[str] = None,
                           album: Optional[str] = None, cover_locator: Optional[str] = None,
                           track_locator: Optional[str] = None, is_playing: bool = False,
                           duration_seconds: Optional[float] = 0) -> None:
        """Show a track; starts the session and notification if needed."""
        self.processor.submit(Update(
            title=title,
            artist=artist,
            album=album,
            cover_locator=cover_locator,
            track_locator=track_locator,
            is_playing=bool(is_playing),
            duration_ms=seconds_to_millis(duration_seconds),
        ))

    def set_playback_flag(self, is_playing: bool) -> None:
        self.processor.submit(SetPlaybackFlag(bool(is_playing)))

    def update_position(self, position_seconds: Optional[float],
                        duration_seconds: Optional[float]) -> None:
        self.processor.submit(UpdatePosition(
            position_ms=seconds_to_millis(position_seconds),
            duration_ms=seconds_to_millis(duration_seconds),
        ))

    def stop_session(self) -> None:
        self.processor.submit(Stop())

    def show_volume_ui(self) -> float:
        if self.volume is None:
            raise SessionError("Audio Service not available")
        return self.volume.show_volume_ui()

    def add_listener(self, callback: Callable[[str], None]) -> Callable[[str], None]:
        """Subscribe to outbound media actions ("play", "seekTo:1500", ...)."""
        self.event_bus.subscribe(EventBus.MEDIA_ACTION, callback)
        return callback

    def remove_listener(self, callback: Callable[[str], None]) -> None:
        self.event_bus.unsubscribe(EventBus.MEDIA_ACTION, callback)

    # ------------------------------------------------------------------------
    # Transport commands (session controls, notification buttons)
    # ------------------------------------------------------------------------

    def play(self) -> None:
        self.processor.submit(Play())

    def pause(self) -> None:
        self.processor.submit(Pause())

    def next(self) -> None:
        self.processor.submit(Next())

    def previous(self) -> None:
        self.processor.submit(Previous())

    def seek_to(self, position_ms: int) -> None:
        self.processor.submit(SeekTo(int(position_ms)))

    def audio_route_changed(self, connected: bool) -> None:
        self.processor.submit(AudioRouteChanged(bool(connected)))

    def handle_notification_action(self, action_key: str) -> None:
        actions = {
            self.targets.play: self.play,
            self.targets.pause: self.pause,
            self.targets.next: self.next,
            self.targets.previous: self.previous,
            self.targets.open: self._open,
        }
        handler = actions.get(action_key)
        if handler is None:
            logger.warning("Unknown notification action: %s", action_key)
            return
        handler()

    def _open(self) -> None:
        if self.on_open:
            self.on_open()

    # ------------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------------

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self.processor.flush(timeout)

    def shutdown(self, timeout: Optional[float] = 5.0) -> None:
        """Tear the session down and stop the command thread."""
        self.processor.submit(Stop())
        self.processor.shutdown(timeout)

    # ------------------------------------------------------------------------
    # Effects (command thread only)
    # ------------------------------------------------------------------------

    def _handle_effect(self, effect: Effect) -> None:
        if isinstance(effect, Render):
            self._render(effect)
        elif isinstance(effect, Emit):
            self.event_bus.publish(EventBus.MEDIA_ACTION, effect.event)
        elif isinstance(effect, ResolveArtwork):
            self.executor.submit(self._resolve_artwork, effect)
        elif isinstance(effect, Activate):
            self._activate()
        elif isinstance(effect, Teardown):
            self._teardown()

    def _activate(self) -> None:
        logger.info("Starting media session")
        if self.session is not None:
            self.session.activate()
        if self.route_monitor is not None:
            self.route_monitor.start()

    def _render(self, effect: Render) -> None:
        state = self.machine.state
        if effect.session and self.session is not None:
            self.session.publish(render_session(state, self.targets))
        if effect.notification and self.notifier is not None:
            self.notifier.show(render_notification(state, self.targets, self.app_name))
        self.event_bus.publish(EventBus.SESSION_STATE_CHANGED, {
            'status': state.status.value,
            'is_playing': state.is_playing,
            'title': state.title,
        })

    def _teardown(self) -> None:
        logger.info("Stopping media session")
        steps: List[Callable[[], None]] = []
        if self.route_monitor is not None:
            steps.append(self.route_monitor.stop)
        if self.notifier is not None:
            steps.append(self.notifier.cancel)
        if self.session is not None:
            steps.append(self.session.release)
        for step in steps:
            try:
                step()
            except Exception as e:
                logger.error("Teardown step failed: %s", e, exc_info=True)
        self.event_bus.publish(EventBus.SESSION_STATE_CHANGED, {
            'status': self.machine.state.status.value,
            'is_playing': False,
            'title': self.machine.state.title,
        })

    def _resolve_artwork(self, request: ResolveArtwork) -> None:
        """Worker thread: resolve art and hand it back to the command thread."""
        try:
            artwork = self.resolver.resolve_art(request.cover_locator, request.track_locator)
        except Exception as e:
            logger.debug("Artwork resolution failed: %s", e)
            artwork = None
        self.processor.submit(ArtworkReady(request.generation, artwork))
