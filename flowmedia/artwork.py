"""Cover art resolution, normalization and the on-disk artwork cache.

Artwork is best effort everywhere: every failure here ends up as "no art",
never as an exception for the caller.
"""

import io
import os
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, UnidentifiedImageError

from flowmedia.logging import get_logger
from flowmedia.metadata import extract_embedded_picture, locator_to_path, stable_hash

logger = get_logger(__name__)


DEFAULT_MAX_SIZE = 512
JPEG_QUALITY = 90

_UNSAFE_KEY_CHARS = re.compile(r'[^A-Za-z0-9_.-]')


@dataclass(frozen=True)
class Artwork:
    """A decoded, size-normalized cover image.

    Never mutated after creation; a new track gets a new Artwork.
    """

    key: str
    image: Image.Image = field(repr=False, compare=False)
    path: Optional[str] = None

    @property
    def size(self):
        return self.image.size


def art_key(cover_locator: Optional[str], track_locator: Optional[str]) -> str:
    """Composite change-detection key for live-session artwork."""
    return f"{cover_locator or ''}|{track_locator or ''}"


def downscale(image: Image.Image, max_size: int = DEFAULT_MAX_SIZE) -> Image.Image:
    """Shrink image so its longer edge is max_size, keeping aspect ratio.

    Images that already fit are returned unchanged.
    """
    width, height = image.size
    if width <= max_size and height <= max_size:
        return image
    scale = max_size / max(width, height)
    new_size = (max(1, int(width * scale)), max(1, int(height * scale)))
    return image.resize(new_size, Image.Resampling.LANCZOS)


def decode_image(data: bytes) -> Optional[Image.Image]:
    """Decode image bytes fully, or None if they are not a readable image."""
    if not data:
        return None
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
        return image
    except (UnidentifiedImageError, OSError, ValueError) as e:
        logger.debug("Image decode failed: %s", e)
        return None


def encode_jpeg(image: Image.Image) -> bytes:
    if image.mode not in ('RGB', 'L'):
        image = image.convert('RGB')
    buffer = io.BytesIO()
    image.save(buffer, format='JPEG', quality=JPEG_QUALITY)
    return buffer.getvalue()


def normalize_image_bytes(data: bytes, max_size: int = DEFAULT_MAX_SIZE) -> Optional[bytes]:
    """Decode, downscale and re-encode cover bytes as JPEG."""
    image = decode_image(data)
    if image is None:
        return None
    try:
        return encode_jpeg(downscale(image, max_size))
    except (OSError, ValueError) as e:
        logger.debug("Image encode failed: %s", e)
        return None


class ArtworkCache:
    """Write-once cache of cover images keyed by album identity.

    An existing non-empty file is trusted as-is: it is never rewritten or
    checked for freshness. Each writer fills a private temp file and hard-links
    it into place, so concurrent scans writing the same key need no lock and
    never see a partial file; the first writer wins.
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)

    def path_for(self, key: str) -> Path:
        safe_key = _UNSAFE_KEY_CHARS.sub('_', key) or 'unknown'
        return self.cache_dir / f"{safe_key}.jpg"

    def lookup(self, key: str) -> Optional[str]:
        """Path of a cached entry, or None if absent or empty."""
        path = self.path_for(key)
        try:
            if path.stat().st_size > 0:
                return str(path)
        except OSError:
            pass
        return None

    def cache_art(self, data: Optional[bytes], key: str) -> Optional[str]:
        """
        Store data under key unless an entry already exists.

        Args:
            data: Image bytes (None/empty stores nothing)
            key: Album identity, e.g. "a_1234"

        Returns:
            Path of the cached file, or None when nothing could be cached
        """
        if not data:
            return None

        existing = self.lookup(key)
        if existing:
            return existing

        path = self.path_for(key)
        temp_path = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self.cache_dir, suffix='.tmp')
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
            try:
                # Only complete files ever appear under the final name
                os.link(temp_path, path)
            except FileExistsError:
                if self.lookup(key) is None:
                    # Stale empty entry left by an interrupted write
                    os.replace(temp_path, path)
                    temp_path = None
        except OSError as e:
            logger.debug("Error saving album art %s: %s", path, e)
            return None
        finally:
            if temp_path is not None:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
        return str(path)


class ArtworkResolver:
    """Finds cover art for the now-playing track.

    resolve_art() blocks on file I/O and image decoding; it must be run on a
    worker thread.
    """

    def __init__(
        self,
        cache: Optional[ArtworkCache] = None,
        max_size: int = DEFAULT_MAX_SIZE,
        embedded_picture: Callable[[str], Optional[bytes]] = extract_embedded_picture,
    ):
        self._cache = cache
        self._max_size = max_size
        self._embedded_picture = embedded_picture

    def resolve_art(self, cover_locator: Optional[str], track_locator: Optional[str]) -> Optional[Artwork]:
        """
        Resolve artwork, trying the cover locator then the track's embedded art.

        Returns:
            Normalized Artwork, or None when neither source yields an image
        """
        image = None
        if cover_locator:
            image = self._decode_cover(cover_locator)
        if image is None and track_locator:
            image = self._decode_embedded(track_locator)
        if image is None:
            return None

        image = downscale(image, self._max_size)
        key = art_key(cover_locator, track_locator)

        path = None
        if self._cache is not None:
            try:
                path = self._cache.cache_art(encode_jpeg(image), f"np_{stable_hash(key)}")
            except (OSError, ValueError) as e:
                logger.debug("Could not persist now-playing art: %s", e)
        return Artwork(key=key, image=image, path=path)

    def _decode_cover(self, cover_locator: str) -> Optional[Image.Image]:
        try:
            path = locator_to_path(cover_locator)
            if not os.path.isfile(path):
                return None
            with open(path, 'rb') as f:
                return decode_image(f.read())
        except OSError as e:
            logger.debug("Album art URI failed: %s", e)
            return None

    def _decode_embedded(self, track_locator: str) -> Optional[Image.Image]:
        try:
            data = self._embedded_picture(track_locator)
        except Exception as e:
            # Third-party parsers raise a wide range of errors on bad files
            logger.debug("Embedded art extraction failed: %s", e)
            return None
        return decode_image(data) if data else None
