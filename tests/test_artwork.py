"""Tests for artwork normalization, caching and resolution."""

import threading

from PIL import Image

from flowmedia.artwork import (
    ArtworkCache,
    ArtworkResolver,
    art_key,
    decode_image,
    downscale,
    normalize_image_bytes,
)
from flowmedia.metadata import path_to_uri, stable_hash


class TestDownscale:

    def test_large_image_scaled_by_longer_edge(self):
        image = Image.new('RGB', (2048, 1024))
        assert downscale(image).size == (512, 256)

    def test_tall_image(self):
        image = Image.new('RGB', (600, 1200))
        assert downscale(image).size == (256, 512)

    def test_small_image_untouched(self):
        image = Image.new('RGB', (300, 512))
        assert downscale(image) is image

    def test_normalize_bytes_outputs_jpeg(self, png_bytes):
        data = normalize_image_bytes(png_bytes(1024, 1024))
        image = decode_image(data)
        assert image.format == 'JPEG'
        assert image.size == (512, 512)

    def test_garbage_is_not_an_image(self):
        assert decode_image(b'definitely not an image') is None
        assert normalize_image_bytes(b'') is None


class TestArtworkCache:

    def test_write_once(self, temp_dir):
        cache = ArtworkCache(temp_dir / 'covers')
        first = cache.cache_art(b'first', 'a_1')
        second = cache.cache_art(b'second', 'a_1')
        assert first == second
        with open(first, 'rb') as f:
            assert f.read() == b'first'

    def test_empty_data_has_no_side_effect(self, temp_dir):
        cache = ArtworkCache(temp_dir / 'covers')
        assert cache.cache_art(b'', 'a_1') is None
        assert cache.cache_art(None, 'a_1') is None
        assert not (temp_dir / 'covers').exists()

    def test_stale_empty_file_is_replaced(self, temp_dir):
        cache = ArtworkCache(temp_dir)
        cache.path_for('a_2').touch()
        assert cache.lookup('a_2') is None
        path = cache.cache_art(b'data', 'a_2')
        assert path is not None
        assert cache.lookup('a_2') == path

    def test_concurrent_writers_first_wins(self, temp_dir):
        cache = ArtworkCache(temp_dir / 'covers')
        payloads = [bytes([n]) * 200_000 for n in range(8)]
        barrier = threading.Barrier(len(payloads))
        results = []

        def write(data):
            barrier.wait(5)
            results.append(cache.cache_art(data, 'a_3'))

        threads = [threading.Thread(target=write, args=(data,)) for data in payloads]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(10)

        assert len(results) == len(payloads)
        assert set(results) == {str(cache.path_for('a_3'))}
        with open(results[0], 'rb') as f:
            assert f.read() in payloads
        assert [p.name for p in (temp_dir / 'covers').iterdir()] == ['a_3.jpg']

    def test_key_is_sanitized(self, temp_dir):
        cache = ArtworkCache(temp_dir)
        assert cache.path_for('../evil/key').parent == temp_dir


class TestArtworkResolver:

    def test_cover_file_first(self, temp_dir, png_bytes):
        cover = temp_dir / 'cover.png'
        cover.write_bytes(png_bytes(2048, 1024))
        embedded_calls = []

        def embedded(locator):
            embedded_calls.append(locator)
            return png_bytes(10, 10)

        resolver = ArtworkResolver(ArtworkCache(temp_dir / 'cache'), embedded_picture=embedded)
        artwork = resolver.resolve_art(path_to_uri(cover), '/music/t.mp3')

        assert artwork.size == (512, 256)
        assert embedded_calls == []
        key = art_key(path_to_uri(cover), '/music/t.mp3')
        assert artwork.key == key
        assert artwork.path.endswith(f'np_{stable_hash(key)}.jpg')

    def test_falls_back_to_embedded_art(self, temp_dir, png_bytes):
        resolver = ArtworkResolver(embedded_picture=lambda locator: png_bytes(64, 32))
        artwork = resolver.resolve_art(str(temp_dir / 'missing.jpg'), '/music/t.mp3')
        assert artwork.size == (64, 32)
        assert artwork.path is None

    def test_no_art_is_not_an_error(self, temp_dir):
        def broken(locator):
            raise ValueError("corrupt tag")

        resolver = ArtworkResolver(embedded_picture=broken)
        assert resolver.resolve_art(None, '/music/t.mp3') is None
        assert resolver.resolve_art(None, None) is None

    def test_undecodable_cover_falls_through(self, temp_dir):
        cover = temp_dir / 'cover.jpg'
        cover.write_bytes(b'not a jpeg')
        resolver = ArtworkResolver(embedded_picture=lambda locator: None)
        assert resolver.resolve_art(str(cover), None) is None
