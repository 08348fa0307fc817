"""Tests for library scanning."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from flowmedia.artwork import ArtworkCache
from flowmedia.catalog import MediaCatalog
from flowmedia.events import EventBus
from flowmedia.exceptions import FolderSelectionCancelled, ScanError
from flowmedia.metadata import ProbedFile, album_key, path_to_uri
from flowmedia.music_library import (
    DirectoryEntry,
    DownloadsFilter,
    EntryKind,
    LibraryScanner,
    MusicScanner,
    choose_folder,
    is_audio_mime_type,
)


@pytest.fixture
def catalog(temp_dir):
    catalog = MediaCatalog(temp_dir / 'catalog.sqlite3')
    catalog.add_album(1, 'Album', 'Band', number_of_songs=2, art_path=str(temp_dir / 'art.jpg'))
    catalog.add_album(2, '<unknown>', None)
    catalog.add_artist(3, 'Band', number_of_tracks=2, number_of_albums=1)
    catalog.add_track(20, 'Song B', 'Band', 'Album', 1, 3, 125999, '/music/Download/b.mp3',
                      relative_path='Download/')
    catalog.add_track(21, 'Song A', '<unknown>', 'Album', 1, 3, 999, '/music/a.mp3',
                      relative_path='Music/')
    catalog.add_track(22, 'Song C', 'Band', None, 2, 3, 3000, '/music/download/c.mp3',
                      relative_path='download/')
    return catalog


@pytest.fixture
def scanner(catalog, temp_dir):
    return LibraryScanner(catalog, ArtworkCache(temp_dir / 'covers'))


class TestCatalogScan:

    def test_scan_library(self, scanner, temp_dir):
        result = scanner.scan_library()
        assert [t.title for t in result.tracks] == ['Song A', 'Song B', 'Song C']
        assert [t.duration for t in result.tracks] == [0, 125, 3]

        song_a, song_b, song_c = result.tracks
        assert song_a.id == 't_21'
        assert song_a.artist == 'Unknown Artist'
        assert song_a.content_uri == 'file:///music/a.mp3'
        assert song_b.cover == path_to_uri(temp_dir / 'art.jpg')
        assert song_c.album == 'Unknown Album'
        assert song_c.cover == ''

        assert sorted(a.title for a in result.albums) == ['Album', 'Unknown Album']
        assert result.artists[0].to_dict()['image'] == ''

    def test_unreachable_catalog(self, temp_dir):
        scanner = LibraryScanner(MediaCatalog(temp_dir / 'none.sqlite3'), ArtworkCache(temp_dir))
        with pytest.raises(ScanError, match="Failed to scan music"):
            scanner.scan_library()
        with pytest.raises(ScanError, match="Scan downloads failed"):
            scanner.scan_downloads()

    def test_downloads_case_sensitive_by_default(self, scanner):
        result = scanner.scan_downloads()
        assert [t.id for t in result.tracks] == ['t_20']

    def test_downloads_case_insensitive(self, catalog, temp_dir):
        scanner = LibraryScanner(catalog, ArtworkCache(temp_dir),
                                 downloads_filter=DownloadsFilter(case_sensitive=False))
        result = scanner.scan_downloads()
        assert [t.id for t in result.tracks] == ['t_20', 't_22']

    def test_downloads_filter_matches_data_path(self):
        matches = DownloadsFilter()
        assert matches({'relative_path': None, 'data': '/sdcard/Download/x.mp3'})
        assert not matches({'relative_path': 'Music/', 'data': '/sdcard/Music/x.mp3'})


class TestDirectoryScan:

    def test_scan_folder(self, temp_dir, make_wav):
        root = temp_dir / 'library'
        make_wav(root / 'one.wav')
        make_wav(root / 'nested' / 'two.wav', seconds=3.0)
        (root / 'cover.txt').write_text('not audio')

        scanner = LibraryScanner(MediaCatalog(temp_dir / 'c.sqlite3'), ArtworkCache(temp_dir / 'covers'))
        result = scanner.scan_directory(str(root))

        assert result.folder == 'library'
        titles = sorted(t.title for t in result.tracks)
        assert titles == ['one.wav', 'two.wav']
        durations = {t.title: t.duration for t in result.tracks}
        assert durations['two.wav'] == 3
        assert len(result.albums) == 1
        assert result.albums[0].num_songs == 2
        assert result.artists[0].num_albums == 1

    def test_rescan_yields_identical_ids(self, temp_dir, make_wav):
        root = temp_dir / 'library'
        make_wav(root / 'a.wav')
        make_wav(root / 'b.wav')
        scanner = LibraryScanner(MediaCatalog(temp_dir / 'c.sqlite3'), ArtworkCache(temp_dir / 'covers'))

        first = [t.id for t in scanner.scan_directory(path_to_uri(root)).tracks]
        second = [t.id for t in scanner.scan_directory(path_to_uri(root)).tracks]
        assert first == second
        assert len(set(first)) == 2

    def test_embedded_art_cached_per_album(self, temp_dir, png_bytes):
        root = temp_dir / 'library'
        root.mkdir()
        for name in ('a.mp3', 'b.mp3'):
            (root / name).write_bytes(b'')
        picture = png_bytes(1024, 512)

        def probe(locator):
            return ProbedFile(title=locator.rsplit('/', 1)[-1], artist='Band',
                              album='Record', duration_ms=1000, picture=picture)

        cache = ArtworkCache(temp_dir / 'covers')
        scanner = LibraryScanner(MediaCatalog(temp_dir / 'c.sqlite3'), cache, probe=probe)
        result = scanner.scan_directory(str(root))

        cached = cache.lookup(album_key('Record'))
        assert cached is not None
        assert {t.cover for t in result.tracks} == {path_to_uri(cached)}
        assert result.albums[0].cover == path_to_uri(cached)

    def test_unprobeable_files_are_dropped(self, temp_dir):
        root = temp_dir / 'library'
        root.mkdir()
        (root / 'good.mp3').write_bytes(b'')
        (root / 'bad.mp3').write_bytes(b'')
        (root / 'unknown.mp3').write_bytes(b'')

        def probe(locator):
            if locator.endswith('bad.mp3'):
                raise ValueError("corrupt")
            if locator.endswith('unknown.mp3'):
                return None
            return ProbedFile(title='Good')

        scanner = LibraryScanner(MediaCatalog(temp_dir / 'c.sqlite3'), ArtworkCache(temp_dir), probe=probe)
        result = scanner.scan_directory(str(root))
        assert [t.title for t in result.tracks] == ['Good']

    def test_missing_locator(self, scanner):
        with pytest.raises(ScanError, match="Folder URI is required"):
            scanner.scan_directory(None)
        with pytest.raises(ScanError, match="Folder URI is required"):
            scanner.scan_directory("")

    def test_missing_root(self, scanner, temp_dir):
        with pytest.raises(ScanError, match="Folder not found or inaccessible"):
            scanner.scan_directory(str(temp_dir / 'nope'))

    def test_file_as_root(self, scanner, temp_dir):
        path = temp_dir / 'file.mp3'
        path.write_bytes(b'')
        with pytest.raises(ScanError, match="Folder not found or inaccessible"):
            scanner.scan_directory(str(path))


class TestDirectoryEntry:

    def test_children_sorted_and_tagged(self, temp_dir):
        (temp_dir / 'b.flac').write_bytes(b'')
        (temp_dir / 'a').mkdir()
        (temp_dir / 'c.ogg').write_bytes(b'')

        children = DirectoryEntry(EntryKind.DIRECTORY, temp_dir).children()
        assert [c.name for c in children] == ['a', 'b.flac', 'c.ogg']
        assert children[0].kind is EntryKind.DIRECTORY
        assert children[1].mime_type == 'audio/flac'
        assert is_audio_mime_type(children[2].mime_type)

    def test_file_has_no_children(self, temp_dir):
        entry = DirectoryEntry.from_path(temp_dir / 'x.mp3')
        assert entry.kind is EntryKind.FILE
        assert entry.children() == []

    @pytest.mark.parametrize("mime_type, expected", [
        ('audio/mpeg', True), ('application/ogg', True), ('video/mp4', False),
        ('text/plain', False), (None, False),
    ])
    def test_audio_mime_types(self, mime_type, expected):
        assert is_audio_mime_type(mime_type) is expected


class TestChooseFolder:

    def test_cancelled(self):
        with pytest.raises(FolderSelectionCancelled, match="User cancelled folder selection"):
            choose_folder(lambda: None)

    def test_cancel_is_a_scan_error_subtype(self):
        assert issubclass(FolderSelectionCancelled, ScanError)

    def test_chosen(self, temp_dir):
        result = choose_folder(lambda: str(temp_dir))
        assert result == {'folderUri': path_to_uri(temp_dir), 'folderPath': str(temp_dir)}


class TestMusicScanner:

    def test_scan_runs_on_executor_and_publishes(self, scanner):
        bus = EventBus()
        scanned = []
        bus.subscribe(EventBus.LIBRARY_SCANNED, scanned.append)
        with ThreadPoolExecutor(max_workers=2) as executor:
            music = MusicScanner(scanner, executor, bus)
            result = music.scan_library().result(timeout=10)
        assert len(result.tracks) == 3
        assert scanned == [{'source': 'catalog', 'tracks': 3}]

    def test_failure_surfaces_on_future(self, scanner):
        with ThreadPoolExecutor(max_workers=1) as executor:
            future = MusicScanner(scanner, executor).scan_directory(None)
            with pytest.raises(ScanError):
                future.result(timeout=10)
