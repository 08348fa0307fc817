"""Application wiring: one worker pool, one event bus, scanner and session."""

from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from flowmedia.artwork import ArtworkCache, ArtworkResolver
from flowmedia.catalog import MediaCatalog
from flowmedia.config import Config, get_config
from flowmedia.events import EventBus
from flowmedia.exceptions import SessionError
from flowmedia.logging import get_logger
from flowmedia.music_library import DownloadsFilter, LibraryScanner, MusicScanner
from flowmedia.now_playing import NowPlayingService

logger = get_logger(__name__)


class FlowMediaApp:
    """Owns the shared resources and builds the services on demand."""

    def __init__(self, config: Optional[Config] = None):
        self.config = config or get_config()
        self.event_bus = EventBus()
        self.executor = ThreadPoolExecutor(
            max_workers=self.config.scan_workers, thread_name_prefix="flowmedia-io"
        )
        self.art_cache = ArtworkCache(self.config.album_art_cache_dir)
        self.catalog = MediaCatalog(self.config.catalog_db)
        self._scanner: Optional[MusicScanner] = None
        self._now_playing: Optional[NowPlayingService] = None

    @property
    def scanner(self) -> MusicScanner:
        if self._scanner is None:
            library = LibraryScanner(
                self.catalog,
                self.art_cache,
                downloads_filter=DownloadsFilter(
                    substring=self.config.downloads_substring,
                    case_sensitive=self.config.downloads_case_sensitive,
                ),
                art_max_size=self.config.artwork_max_size,
            )
            self._scanner = MusicScanner(library, self.executor, self.event_bus)
        return self._scanner

    @property
    def now_playing(self) -> NowPlayingService:
        """The now-playing service, publishing over the session bus."""
        if self._now_playing is None:
            self._now_playing = self._create_now_playing()
        return self._now_playing

    def _create_now_playing(self) -> NowPlayingService:
        # D-Bus bindings are an optional extra; scans work without them
        from flowmedia.audio_route import AudioRouteMonitor
        from flowmedia.mpris2 import MPRIS2Manager
        from flowmedia.notifications import DesktopNotifier
        from flowmedia.system_volume import SystemVolume

        session = notifier = None
        try:
            session = MPRIS2Manager(
                self.config.session_bus_name,
                identity=self.config.session_identity,
                desktop_entry=self.config.desktop_entry,
            )
            notifier = DesktopNotifier(session.bus)
        except SessionError as e:
            logger.warning("Media session unavailable: %s", e)

        return NowPlayingService(
            session=session,
            notifier=notifier,
            resolver=ArtworkResolver(self.art_cache, self.config.artwork_max_size),
            executor=self.executor,
            event_bus=self.event_bus,
            route_monitor=AudioRouteMonitor(self.config.route_poll_interval_ms),
            volume=SystemVolume(session.bus if session is not None else None),
            app_name=self.config.notification_app_name,
        )

    def shutdown(self):
        """Tear down the session, then the worker pool."""
        if self._now_playing is not None:
            self._now_playing.shutdown()
            self._now_playing = None
        self.executor.shutdown(wait=True)
        logger.debug("Shut down")
