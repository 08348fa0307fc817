"""Track/album/artist models and metadata normalization.

Raw rows from the media catalog and tags probed from files with mutagen are
both normalized here into one model, so the application sees the same shape
whatever the source.
"""

import base64
import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional
from urllib.parse import unquote, urlparse

from mutagen import File, MutagenError
from mutagen.flac import FLAC, Picture
from mutagen.mp4 import MP4

from flowmedia.logging import get_logger

logger = get_logger(__name__)


UNKNOWN = "Unknown"
UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"
# Placeholder some indexers store instead of NULL
UNKNOWN_SENTINEL = "<unknown>"

TRACK_PREFIX = "t_"
ALBUM_PREFIX = "a_"
ARTIST_PREFIX = "ar_"


@dataclass
class Track:
    """A playable track in the app's wire shape."""

    id: str
    title: str
    artist: str
    album: str
    album_id: str
    artist_id: str
    duration: int = 0  # whole seconds
    src: str = ""
    content_uri: str = ""
    cover: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'artist': self.artist,
            'album': self.album,
            'albumId': self.album_id,
            'artistId': self.artist_id,
            'duration': self.duration,
            'src': self.src,
            'contentUri': self.content_uri,
            'cover': self.cover,
        }


@dataclass
class Album:
    id: str
    title: str
    artist: str
    cover: str = ""
    year: int = 0
    num_songs: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'artist': self.artist,
            'cover': self.cover,
            'year': self.year,
            'numSongs': self.num_songs,
        }


@dataclass
class Artist:
    id: str
    name: str
    num_tracks: int = 0
    num_albums: int = 0
    # No source of artist imagery exists; kept for the app's shape
    image: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'numTracks': self.num_tracks,
            'numAlbums': self.num_albums,
            'image': self.image,
        }


@dataclass
class ProbedFile:
    """Tags, stream length and embedded art read from one audio file."""

    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    duration_ms: int = 0
    picture: Optional[bytes] = field(default=None, repr=False)


def clean_text(value: Any, placeholder: str) -> str:
    """Return value as text, or placeholder for None/empty/"<unknown>"."""
    if value is None:
        return placeholder
    text = str(value).strip()
    if not text or text == UNKNOWN_SENTINEL:
        return placeholder
    return text


def millis_to_seconds(duration_ms: Any) -> int:
    """Whole seconds from a millisecond duration, truncating."""
    try:
        millis = int(duration_ms)
    except (TypeError, ValueError):
        return 0
    if millis <= 0:
        return 0
    return millis // 1000


def stable_hash(text: str) -> int:
    """Absolute value of a process-independent 64-bit hash of text.

    Deterministic across runs (unlike hash()), so ids survive rescans. Not
    collision resistant: two different inputs may share an id.
    """
    digest = hashlib.md5(text.encode('utf-8')).digest()
    return abs(int.from_bytes(digest[:8], 'big', signed=True))


def album_key(album: Optional[str]) -> str:
    """Derived album id for sources without native ids.

    Hashes the cleaned name, so missing, blank and "<unknown>" tags share
    one id just as they share the "Unknown Album" title.
    """
    return f"{ALBUM_PREFIX}{stable_hash(clean_text(album, UNKNOWN))}"


def artist_key(artist: Optional[str]) -> str:
    return f"{ARTIST_PREFIX}{stable_hash(clean_text(artist, UNKNOWN))}"


def locator_to_path(locator: str) -> Path:
    """Local path for a file:// URI or a plain path."""
    if locator.startswith('file://'):
        return Path(unquote(urlparse(locator).path))
    return Path(locator).expanduser()


def path_to_uri(path: Path) -> str:
    return Path(path).absolute().as_uri()


def normalize_track(fields: Mapping[str, Any], fallback_title: str = UNKNOWN) -> Track:
    """
    Build a Track from raw catalog fields.

    Args:
        fields: Mapping with id, title, artist, album, album_id, artist_id,
            duration_ms, data, content_uri and cover keys. Ids may be native
            integers (prefixed here) or already prefixed strings.
        fallback_title: Title to use when the source has none

    Returns:
        Normalized Track
    """
    return Track(
        id=_prefixed(TRACK_PREFIX, fields.get('id')),
        title=clean_text(fields.get('title'), fallback_title),
        artist=clean_text(fields.get('artist'), UNKNOWN_ARTIST),
        album=clean_text(fields.get('album'), UNKNOWN_ALBUM),
        album_id=_prefixed(ALBUM_PREFIX, fields.get('album_id')),
        artist_id=_prefixed(ARTIST_PREFIX, fields.get('artist_id')),
        duration=millis_to_seconds(fields.get('duration_ms')),
        src=fields.get('data') or "",
        content_uri=fields.get('content_uri') or "",
        cover=fields.get('cover') or "",
    )


def normalize_album(fields: Mapping[str, Any]) -> Album:
    year = fields.get('year') or 0
    try:
        year = int(year)
    except (TypeError, ValueError):
        year = 0
    return Album(
        id=_prefixed(ALBUM_PREFIX, fields.get('id')),
        title=clean_text(fields.get('album'), UNKNOWN_ALBUM),
        artist=clean_text(fields.get('artist'), UNKNOWN_ARTIST),
        cover=fields.get('cover') or "",
        year=year,
        num_songs=int(fields.get('num_songs') or 0),
    )


def normalize_artist(fields: Mapping[str, Any]) -> Artist:
    return Artist(
        id=_prefixed(ARTIST_PREFIX, fields.get('id')),
        name=clean_text(fields.get('artist'), UNKNOWN_ARTIST),
        num_tracks=int(fields.get('num_tracks') or 0),
        num_albums=int(fields.get('num_albums') or 0),
    )


def track_from_probe(locator: str, probed: ProbedFile, display_name: str,
                     cover: str = "") -> Track:
    """Build a Track for a tree-scanned file, deriving hash ids."""
    return Track(
        id=f"{TRACK_PREFIX}{stable_hash(locator)}",
        title=clean_text(probed.title, display_name),
        artist=clean_text(probed.artist, UNKNOWN_ARTIST),
        album=clean_text(probed.album, UNKNOWN_ALBUM),
        album_id=album_key(probed.album),
        artist_id=artist_key(probed.artist),
        duration=millis_to_seconds(probed.duration_ms),
        src=locator,
        content_uri=locator,
        cover=cover,
    )


def _prefixed(prefix: str, value: Any) -> str:
    if value is None or value == "":
        return f"{prefix}0"
    text = str(value)
    if text.startswith(prefix):
        return text
    return f"{prefix}{text}"


# ----------------------------------------------------------------------------
# Probing files with mutagen
# ----------------------------------------------------------------------------

TITLE_KEYS = [
    'TITLE',      # FLAC, OGG (Vorbis)
    'title',
    'TIT2',       # MP3 (ID3v2)
    '\xa9nam',    # MP4 (iTunes)
]

ARTIST_KEYS = [
    'ARTIST',     # FLAC, OGG (Vorbis)
    'artist',
    'TPE1',       # MP3 (ID3v2)
    '\xa9ART',    # MP4 (iTunes)
    'ALBUMARTIST',
    'TPE2',
    'aART',
]

ALBUM_KEYS = [
    'ALBUM',      # FLAC, OGG (Vorbis)
    'album',
    'TALB',       # MP3 (ID3v2)
    '\xa9alb',    # MP4 (iTunes)
]


def probe_audio_file(locator: str) -> Optional[ProbedFile]:
    """
    Read tags, length and embedded art from an audio file.

    Returns None when mutagen does not recognize the container. Parse errors
    propagate so the caller can decide to skip the file.
    """
    path = locator_to_path(locator)
    audio_file = File(str(path))
    if audio_file is None:
        return None

    probed = ProbedFile(
        title=_get_tag_generic(audio_file, TITLE_KEYS),
        artist=_get_tag_generic(audio_file, ARTIST_KEYS),
        album=_get_tag_generic(audio_file, ALBUM_KEYS),
    )

    info = getattr(audio_file, 'info', None)
    length = getattr(info, 'length', None)
    if length:
        probed.duration_ms = int(length * 1000)

    probed.picture = _embedded_picture(audio_file)
    return probed


def extract_embedded_picture(locator: str) -> Optional[bytes]:
    """Embedded cover art bytes of the track at locator, or None."""
    try:
        audio_file = File(str(locator_to_path(locator)))
    except (MutagenError, OSError) as e:
        logger.debug("Embedded art extraction failed for %s: %s", locator, e)
        return None
    if audio_file is None:
        return None
    return _embedded_picture(audio_file)


def _get_tag_generic(audio_file, tag_keys: list) -> Optional[str]:
    """Get a tag value trying multiple possible keys - works for all formats."""
    tags = getattr(audio_file, 'tags', None)
    if tags is None:
        return None

    for key in tag_keys:
        try:
            if key not in tags:
                continue
            value = tags[key]
        except (KeyError, TypeError, ValueError):
            continue

        # Vorbis comments and MP4 atoms are lists, ID3 frames carry .text
        if hasattr(value, 'text'):
            value = value.text
        if isinstance(value, (list, tuple)):
            if not value:
                continue
            value = value[0]
        if isinstance(value, bytes):
            value = value.decode('utf-8', errors='ignore')

        result = str(value).strip()
        if result:
            return result
    return None


def _embedded_picture(audio_file) -> Optional[bytes]:
    """Return the first embedded picture of a mutagen file object."""
    if isinstance(audio_file, FLAC):
        for picture in audio_file.pictures:
            if picture.data:
                return picture.data

    tags = getattr(audio_file, 'tags', None)
    if tags is None:
        return None

    # MP3: APIC frames keyed "APIC:<description>"
    getall = getattr(tags, 'getall', None)
    if callable(getall):
        try:
            for frame in getall('APIC'):
                if frame.data:
                    return frame.data
        except (KeyError, TypeError):
            pass

    if isinstance(audio_file, MP4):
        covers = tags.get('covr') or []
        for cover in covers:
            if cover:
                return bytes(cover)
        return None

    # Ogg Vorbis/Opus: base64 FLAC picture blocks
    try:
        blocks = tags.get('metadata_block_picture') or []
    except (AttributeError, TypeError, ValueError):
        blocks = []
    for block in blocks:
        try:
            picture = Picture(base64.b64decode(block))
        except (ValueError, TypeError, MutagenError):
            continue
        if picture.data:
            return picture.data
    return None
