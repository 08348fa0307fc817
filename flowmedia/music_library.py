"""Music library scanning from the media catalog and from folder trees."""

import mimetypes
import os
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from flowmedia.artwork import ArtworkCache, DEFAULT_MAX_SIZE, normalize_image_bytes
from flowmedia.catalog import MediaCatalog
from flowmedia.events import EventBus
from flowmedia.exceptions import CatalogError, FolderSelectionCancelled, ScanError
from flowmedia.logging import get_logger
from flowmedia.metadata import (
    Album,
    Artist,
    ProbedFile,
    Track,
    locator_to_path,
    normalize_album,
    normalize_artist,
    normalize_track,
    path_to_uri,
    probe_audio_file,
    track_from_probe,
)

logger = get_logger(__name__)


# Extensions not every system mime.types knows about
AUDIO_MIME_TYPES = {
    '.mp3': 'audio/mpeg',
    '.flac': 'audio/flac',
    '.ogg': 'application/ogg',
    '.oga': 'audio/ogg',
    '.opus': 'audio/opus',
    '.m4a': 'audio/mp4',
    '.aac': 'audio/aac',
    '.wav': 'audio/x-wav',
    '.wma': 'audio/x-ms-wma',
    '.aiff': 'audio/aiff',
}

for _ext, _mime in AUDIO_MIME_TYPES.items():
    mimetypes.add_type(_mime, _ext)

OGG_CONTAINER_TYPE = 'application/ogg'


def is_audio_mime_type(mime_type: Optional[str]) -> bool:
    """True for audio/* and the generic ogg container type."""
    return mime_type is not None and (
        mime_type.startswith('audio/') or mime_type == OGG_CONTAINER_TYPE
    )


class EntryKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"


@dataclass(frozen=True)
class DirectoryEntry:
    """One node of a scanned folder tree."""

    kind: EntryKind
    path: Path
    mime_type: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def locator(self) -> str:
        return path_to_uri(self.path)

    @classmethod
    def from_path(cls, path: Path) -> 'DirectoryEntry':
        # Symlinked directories are not followed, which also rules out cycles
        if path.is_dir() and not path.is_symlink():
            return cls(EntryKind.DIRECTORY, path)
        mime_type, _ = mimetypes.guess_type(path.name)
        return cls(EntryKind.FILE, path, mime_type)

    def children(self) -> List['DirectoryEntry']:
        """Entries of a directory, sorted by name; empty for files."""
        if self.kind is not EntryKind.DIRECTORY:
            return []
        with os.scandir(self.path) as it:
            names = sorted(entry.name for entry in it)
        return [DirectoryEntry.from_path(self.path / name) for name in names]


def walk_entries(entry: DirectoryEntry, visit: Callable[[DirectoryEntry], None]) -> None:
    """Call visit for every file below entry, depth first.

    Directories that cannot be listed are skipped with their subtree.
    """
    if entry.kind is EntryKind.FILE:
        visit(entry)
        return
    try:
        children = entry.children()
    except OSError as e:
        logger.debug("Skipping unreadable directory %s: %s", entry.path, e)
        return
    for child in children:
        walk_entries(child, visit)


@dataclass
class DownloadsFilter:
    """Predicate selecting catalog rows that live in a downloads folder."""

    substring: str = "Download"
    case_sensitive: bool = True

    def __call__(self, row: Dict[str, Any]) -> bool:
        needle = self.substring if self.case_sensitive else self.substring.lower()
        for value in (row.get('relative_path'), row.get('data')):
            if not value:
                continue
            haystack = value if self.case_sensitive else value.lower()
            if needle in haystack:
                return True
        return False


@dataclass
class ScanResult:
    tracks: List[Track] = field(default_factory=list)
    albums: List[Album] = field(default_factory=list)
    artists: List[Artist] = field(default_factory=list)
    folder: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            'tracks': [t.to_dict() for t in self.tracks],
            'albums': [a.to_dict() for a in self.albums],
            'artists': [a.to_dict() for a in self.artists],
        }
        if self.folder is not None:
            result['folder'] = self.folder
        return result


def aggregate_collections(tracks: List[Track]) -> ScanResult:
    """Build albums and artists from a flat track list (tree scans)."""
    albums: Dict[str, Album] = {}
    artists: Dict[str, Artist] = {}
    artist_album_ids: Dict[str, set] = {}

    for track in tracks:
        album = albums.get(track.album_id)
        if album is None:
            album = albums[track.album_id] = Album(
                id=track.album_id, title=track.album, artist=track.artist, cover=track.cover
            )
        album.num_songs += 1
        if not album.cover and track.cover:
            album.cover = track.cover

        artist = artists.get(track.artist_id)
        if artist is None:
            artist = artists[track.artist_id] = Artist(id=track.artist_id, name=track.artist)
        artist.num_tracks += 1
        artist_album_ids.setdefault(track.artist_id, set()).add(track.album_id)

    for artist_id, album_ids in artist_album_ids.items():
        artists[artist_id].num_albums = len(album_ids)

    return ScanResult(
        tracks=tracks,
        albums=sorted(albums.values(), key=lambda a: a.title),
        artists=sorted(artists.values(), key=lambda a: a.name),
    )


class LibraryScanner:
    """Scans the library; every method blocks, run them on a worker."""

    def __init__(
        self,
        catalog: MediaCatalog,
        art_cache: ArtworkCache,
        downloads_filter: Optional[Callable[[Dict[str, Any]], bool]] = None,
        probe: Callable[[str], Optional[ProbedFile]] = probe_audio_file,
        art_max_size: int = DEFAULT_MAX_SIZE,
    ):
        self._catalog = catalog
        self._art_cache = art_cache
        self._downloads_filter = downloads_filter or DownloadsFilter()
        self._probe = probe
        self._art_max_size = art_max_size

    def scan_library(self) -> ScanResult:
        """Read tracks, albums and artists from the catalog."""
        try:
            tracks = _normalize_rows(self._catalog.query_tracks(), self._catalog_track)
            albums = _normalize_rows(self._catalog.query_albums(), self._catalog_album)
            artists = _normalize_rows(self._catalog.query_artists(),
                                      lambda row: normalize_artist(_artist_fields(row)))
        except CatalogError as e:
            logger.error("Library scan failed: %s", e)
            raise ScanError(f"Failed to scan music: {e}") from e

        logger.info("Catalog scan: %d tracks, %d albums, %d artists",
                    len(tracks), len(albums), len(artists))
        return ScanResult(tracks=tracks, albums=albums, artists=artists)

    def scan_downloads(self) -> ScanResult:
        """Catalog tracks whose path marks them as downloaded."""
        try:
            rows = [dict(row) for row in self._catalog.query_tracks()]
        except CatalogError as e:
            logger.error("Downloads scan failed: %s", e)
            raise ScanError(f"Scan downloads failed: {e}") from e

        tracks = _normalize_rows([row for row in rows if self._downloads_filter(row)],
                                 self._catalog_track)
        logger.info("Downloads scan: %d of %d tracks", len(tracks), len(rows))
        return ScanResult(tracks=tracks)

    def scan_directory(self, root_locator: Optional[str]) -> ScanResult:
        """
        Walk a folder tree and probe every audio file in it.

        Args:
            root_locator: Folder path or file:// URI

        Returns:
            ScanResult with tracks plus albums/artists built from them

        Raises:
            ScanError: Missing locator or unusable root folder
        """
        if not root_locator:
            raise ScanError("Folder URI is required")

        root_path = locator_to_path(root_locator)
        if not root_path.is_dir() or not os.access(root_path, os.R_OK | os.X_OK):
            raise ScanError("Folder not found or inaccessible")

        tracks: Dict[str, Track] = {}

        def visit(entry: DirectoryEntry) -> None:
            if not is_audio_mime_type(entry.mime_type):
                return
            track = self._process_audio_file(entry)
            if track is not None and track.id not in tracks:
                tracks[track.id] = track

        try:
            walk_entries(DirectoryEntry(EntryKind.DIRECTORY, root_path), visit)
        except OSError as e:
            raise ScanError(f"Folder scan failed: {e}") from e

        result = aggregate_collections(list(tracks.values()))
        result.folder = root_path.name
        logger.info("Folder scan of %s: %d tracks", root_path, len(result.tracks))
        return result

    def _process_audio_file(self, entry: DirectoryEntry) -> Optional[Track]:
        locator = entry.locator
        try:
            probed = self._probe(locator)
        except Exception as e:
            # Corrupt, unsupported or unreadable files drop out of the result
            logger.debug("Skipping %s: %s", entry.path, e)
            return None
        if probed is None:
            logger.debug("Skipping unrecognized file %s", entry.path)
            return None

        track = track_from_probe(locator, probed, entry.name)
        cover_path = self._cache_cover(probed.picture, track.album_id)
        if cover_path:
            track.cover = path_to_uri(Path(cover_path))
        return track

    def _cache_cover(self, picture: Optional[bytes], key: str) -> Optional[str]:
        if not picture:
            return None
        existing = self._art_cache.lookup(key)
        if existing:
            return existing
        return self._art_cache.cache_art(normalize_image_bytes(picture, self._art_max_size), key)

    def _catalog_track(self, row: Dict[str, Any]) -> Track:
        fields = {
            'id': row.get('id'),
            'title': row.get('title'),
            'artist': row.get('artist'),
            'album': row.get('album'),
            'album_id': row.get('album_id'),
            'artist_id': row.get('artist_id'),
            'duration_ms': row.get('duration'),
            'data': row.get('data'),
            'cover': _art_uri(row.get('art_path')),
        }
        if row.get('data'):
            fields['content_uri'] = path_to_uri(Path(row['data']))
        return normalize_track(fields)

    def _catalog_album(self, row: Dict[str, Any]) -> Album:
        return normalize_album({
            'id': row.get('id'),
            'album': row.get('album'),
            'artist': row.get('artist'),
            'cover': _art_uri(row.get('art_path')),
            'year': row.get('first_year'),
            'num_songs': row.get('number_of_songs'),
        })


def _normalize_rows(rows, normalize) -> list:
    """Normalize catalog rows, dropping any row that cannot be converted."""
    items = []
    for row in rows:
        try:
            items.append(normalize(dict(row)))
        except (TypeError, ValueError) as e:
            logger.debug("Dropping malformed catalog row: %s", e)
    return items


def _artist_fields(row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'id': row.get('id'),
        'artist': row.get('artist'),
        'num_tracks': row.get('number_of_tracks'),
        'num_albums': row.get('number_of_albums'),
    }


def _art_uri(art_path: Optional[str]) -> str:
    return path_to_uri(Path(art_path)) if art_path else ""


def choose_folder(chooser: Callable[[], Optional[str]]) -> Dict[str, str]:
    """
    Ask the user for a folder to scan.

    Args:
        chooser: Callable showing a folder picker; returns the chosen path or
            URI, or None when the user cancels

    Raises:
        FolderSelectionCancelled: The picker was dismissed
    """
    chosen = chooser()
    if not chosen:
        raise FolderSelectionCancelled("User cancelled folder selection")
    path = locator_to_path(chosen)
    return {'folderUri': path_to_uri(path), 'folderPath': str(path)}


class MusicScanner:
    """Runs library scans on the shared worker pool.

    Each method returns a Future; a failed scan sets a ScanError on it.
    """

    def __init__(self, scanner: LibraryScanner, executor: Executor,
                 event_bus: Optional[EventBus] = None):
        self._scanner = scanner
        self._executor = executor
        self._events = event_bus

    def scan_library(self) -> 'Future[ScanResult]':
        return self._submit('catalog', self._scanner.scan_library)

    def scan_directory(self, root_locator: Optional[str]) -> 'Future[ScanResult]':
        return self._submit('folder', self._scanner.scan_directory, root_locator)

    def scan_downloads(self) -> 'Future[ScanResult]':
        return self._submit('downloads', self._scanner.scan_downloads)

    def _submit(self, source: str, fn, *args) -> 'Future[ScanResult]':
        future = self._executor.submit(fn, *args)
        if self._events is not None:
            future.add_done_callback(lambda f: self._on_scan_done(source, f))
        return future

    def _on_scan_done(self, source: str, future: 'Future[ScanResult]') -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self._events.publish(
            EventBus.LIBRARY_SCANNED,
            {'source': source, 'tracks': len(future.result().tracks)},
        )
