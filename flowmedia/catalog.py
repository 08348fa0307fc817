"""SQLite media catalog: the indexed source for library scans.

The catalog mirrors what a system media indexer exposes: flat audio, album
and artist tables that can be queried without touching the filesystem. It
can be rebuilt from a directory scan with index_tracks().
"""

import sqlite3
from collections import defaultdict
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from flowmedia.exceptions import CatalogError
from flowmedia.logging import get_logger
from flowmedia.metadata import Track, UNKNOWN_ALBUM, UNKNOWN_ARTIST, locator_to_path

logger = get_logger(__name__)

CURRENT_DB_VERSION = 1

SCHEMA = """
    CREATE TABLE IF NOT EXISTS audio (
        id INTEGER PRIMARY KEY,
        title TEXT,
        artist TEXT,
        album TEXT,
        album_id INTEGER,
        artist_id INTEGER,
        duration INTEGER,
        data TEXT,
        relative_path TEXT,
        is_music INTEGER DEFAULT 1,
        track INTEGER,
        year INTEGER
    );
    CREATE TABLE IF NOT EXISTS albums (
        id INTEGER PRIMARY KEY,
        album TEXT,
        artist TEXT,
        number_of_songs INTEGER DEFAULT 0,
        first_year INTEGER,
        art_path TEXT
    );
    CREATE TABLE IF NOT EXISTS artists (
        id INTEGER PRIMARY KEY,
        artist TEXT,
        number_of_tracks INTEGER DEFAULT 0,
        number_of_albums INTEGER DEFAULT 0
    );
    CREATE INDEX IF NOT EXISTS idx_audio_title ON audio(title);
    CREATE INDEX IF NOT EXISTS idx_albums_album ON albums(album);
    CREATE INDEX IF NOT EXISTS idx_artists_artist ON artists(artist);
"""

TRACK_COLUMNS = (
    "audio.id, audio.title, audio.artist, audio.album, audio.album_id, "
    "audio.artist_id, audio.duration, audio.data, audio.relative_path, "
    "albums.art_path"
)


class MediaCatalog:
    """Read/write access to the catalog database.

    Scans open the database read-only; a missing file is reported as
    unreachable rather than silently creating an empty catalog.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    def _connect(self, readonly: bool = True) -> sqlite3.Connection:
        try:
            if readonly:
                db = sqlite3.connect(f"{self.db_path.absolute().as_uri()}?mode=ro", uri=True)
            else:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                db = sqlite3.connect(str(self.db_path))
                upgrade_database_if_needed(db)
        except (sqlite3.Error, OSError) as e:
            raise CatalogError(f"Catalog unavailable at {self.db_path}: {e}") from e
        db.row_factory = sqlite3.Row
        return db

    def _query(self, sql: str, params: Tuple = ()) -> List[sqlite3.Row]:
        db = self._connect()
        try:
            return db.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog query failed: {e}") from e
        finally:
            db.close()

    def query_tracks(self, music_only: bool = True) -> List[sqlite3.Row]:
        """Audio rows (joined with their album art) sorted by title."""
        where = "WHERE audio.is_music != 0" if music_only else ""
        return self._query(
            f"SELECT {TRACK_COLUMNS} FROM audio "
            f"LEFT JOIN albums ON albums.id = audio.album_id "
            f"{where} ORDER BY audio.title ASC"
        )

    def query_albums(self) -> List[sqlite3.Row]:
        return self._query(
            "SELECT id, album, artist, number_of_songs, first_year, art_path "
            "FROM albums ORDER BY album ASC"
        )

    def query_artists(self) -> List[sqlite3.Row]:
        return self._query(
            "SELECT id, artist, number_of_tracks, number_of_albums "
            "FROM artists ORDER BY artist ASC"
        )

    # ------------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------------

    def add_track(self, id: int, title: Optional[str], artist: Optional[str],
                  album: Optional[str], album_id: int, artist_id: int,
                  duration_ms: int, data: str, relative_path: str = "",
                  is_music: bool = True, track: int = 0, year: int = 0) -> None:
        db = self._connect(readonly=False)
        try:
            with db:
                db.execute(
                    "INSERT OR REPLACE INTO audio (id, title, artist, album, album_id, "
                    "artist_id, duration, data, relative_path, is_music, track, year) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (id, title, artist, album, album_id, artist_id, duration_ms,
                     data, relative_path, 1 if is_music else 0, track, year),
                )
        finally:
            db.close()

    def add_album(self, id: int, album: Optional[str], artist: Optional[str],
                  number_of_songs: int = 0, first_year: int = 0,
                  art_path: Optional[str] = None) -> None:
        db = self._connect(readonly=False)
        try:
            with db:
                db.execute(
                    "INSERT OR REPLACE INTO albums (id, album, artist, number_of_songs, "
                    "first_year, art_path) VALUES (?, ?, ?, ?, ?, ?)",
                    (id, album, artist, number_of_songs, first_year, art_path),
                )
        finally:
            db.close()

    def add_artist(self, id: int, artist: Optional[str], number_of_tracks: int = 0,
                   number_of_albums: int = 0) -> None:
        db = self._connect(readonly=False)
        try:
            with db:
                db.execute(
                    "INSERT OR REPLACE INTO artists (id, artist, number_of_tracks, "
                    "number_of_albums) VALUES (?, ?, ?, ?)",
                    (id, artist, number_of_tracks, number_of_albums),
                )
        finally:
            db.close()

    def index_tracks(self, tracks: Iterable[Track], root: Optional[Path] = None) -> int:
        """
        Replace the catalog contents with tree-scanned tracks.

        Args:
            tracks: Tracks from a directory scan (hash-derived ids)
            root: Scanned root, used to fill relative_path

        Returns:
            Number of tracks written
        """
        tracks = list(tracks)
        album_tracks = defaultdict(list)
        artist_albums = defaultdict(set)
        artist_tracks = defaultdict(int)

        db = self._connect(readonly=False)
        try:
            with db:
                db.execute("DELETE FROM audio")
                db.execute("DELETE FROM albums")
                db.execute("DELETE FROM artists")
                for track in tracks:
                    album_id = _numeric_id(track.album_id)
                    artist_id = _numeric_id(track.artist_id)
                    album_tracks[album_id].append(track)
                    artist_albums[artist_id].add(album_id)
                    artist_tracks[artist_id] += 1
                    db.execute(
                        "INSERT OR REPLACE INTO audio (id, title, artist, album, album_id, "
                        "artist_id, duration, data, relative_path, is_music) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, 1)",
                        (_numeric_id(track.id), track.title, track.artist, track.album,
                         album_id, artist_id, track.duration * 1000, track.src,
                         _relative_dir(track.src, root)),
                    )

                for album_id, members in album_tracks.items():
                    first = members[0]
                    art_path = next((_cover_path(t.cover) for t in members if t.cover), None)
                    db.execute(
                        "INSERT OR REPLACE INTO albums (id, album, artist, number_of_songs, "
                        "first_year, art_path) VALUES (?, ?, ?, ?, 0, ?)",
                        (album_id, first.album or UNKNOWN_ALBUM, first.artist or UNKNOWN_ARTIST,
                         len(members), art_path),
                    )

                names = {_numeric_id(t.artist_id): t.artist for t in tracks}
                for artist_id, album_ids in artist_albums.items():
                    db.execute(
                        "INSERT OR REPLACE INTO artists (id, artist, number_of_tracks, "
                        "number_of_albums) VALUES (?, ?, ?, ?)",
                        (artist_id, names[artist_id], artist_tracks[artist_id], len(album_ids)),
                    )
        except sqlite3.Error as e:
            raise CatalogError(f"Catalog update failed: {e}") from e
        finally:
            db.close()

        logger.info("Indexed %d tracks into %s", len(tracks), self.db_path)
        return len(tracks)


def upgrade_database_if_needed(db: sqlite3.Connection) -> None:
    existing_version = db.execute("PRAGMA user_version").fetchone()[0]
    if existing_version < CURRENT_DB_VERSION:
        logger.debug("Migrating catalog from version %d", existing_version)
        db.executescript(SCHEMA)
        db.execute(f"PRAGMA user_version={CURRENT_DB_VERSION}")
        db.commit()


def _numeric_id(prefixed: str) -> int:
    """Integer part of a prefixed id ("t_42" -> 42)."""
    return int(prefixed.rsplit('_', 1)[-1])


def _relative_dir(src: str, root: Optional[Path]) -> str:
    parent = locator_to_path(src).parent
    if root is not None:
        try:
            return str(parent.relative_to(root)) + '/'
        except ValueError:
            pass
    return str(parent) + '/'


def _cover_path(cover: str) -> str:
    return str(locator_to_path(cover))
