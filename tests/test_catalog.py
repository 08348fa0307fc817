"""Tests for the SQLite media catalog."""

import pytest

from flowmedia.catalog import MediaCatalog
from flowmedia.exceptions import CatalogError
from flowmedia.metadata import Track


@pytest.fixture
def catalog(temp_dir):
    catalog = MediaCatalog(temp_dir / 'catalog.sqlite3')
    catalog.add_album(1, 'Zeta', 'Band', number_of_songs=2, first_year=2001,
                      art_path=str(temp_dir / 'zeta.jpg'))
    catalog.add_album(2, 'Alpha', 'Band', number_of_songs=1)
    catalog.add_artist(5, 'Band', number_of_tracks=3, number_of_albums=2)
    catalog.add_track(10, 'b song', 'Band', 'Zeta', 1, 5, 61999, '/m/Download/b.mp3',
                      relative_path='Download/')
    catalog.add_track(11, 'a song', 'Band', 'Zeta', 1, 5, 1000, '/m/a.mp3')
    catalog.add_track(12, 'ringtone', None, None, 2, 5, 500, '/m/ring.ogg', is_music=False)
    return catalog


class TestMediaCatalog:

    def test_missing_database_is_an_error(self, temp_dir):
        catalog = MediaCatalog(temp_dir / 'absent.sqlite3')
        with pytest.raises(CatalogError):
            catalog.query_tracks()
        assert not (temp_dir / 'absent.sqlite3').exists()

    def test_tracks_sorted_and_music_only(self, catalog):
        rows = catalog.query_tracks()
        assert [row['title'] for row in rows] == ['a song', 'b song']
        assert rows[1]['duration'] == 61999
        assert rows[1]['art_path'].endswith('zeta.jpg')

    def test_all_tracks(self, catalog):
        assert len(catalog.query_tracks(music_only=False)) == 3

    def test_albums_and_artists_sorted(self, catalog):
        assert [row['album'] for row in catalog.query_albums()] == ['Alpha', 'Zeta']
        assert [row['artist'] for row in catalog.query_artists()] == ['Band']

    def test_index_tracks_rebuilds(self, catalog, temp_dir):
        tracks = [
            Track(id='t_100', title='One', artist='X', album='A', album_id='a_7',
                  artist_id='ar_8', duration=3, src=str(temp_dir / 'A' / '1.mp3'),
                  cover=(temp_dir / 'c.jpg').as_uri()),
            Track(id='t_101', title='Two', artist='X', album='A', album_id='a_7',
                  artist_id='ar_8', duration=4, src=str(temp_dir / 'A' / '2.mp3')),
        ]
        assert catalog.index_tracks(tracks, root=temp_dir) == 2

        rows = catalog.query_tracks()
        assert [row['id'] for row in rows] == [100, 101]
        assert rows[0]['duration'] == 3000
        assert rows[0]['relative_path'] == 'A/'
        assert rows[0]['art_path'] == str(temp_dir / 'c.jpg')

        albums = catalog.query_albums()
        assert len(albums) == 1
        assert albums[0]['number_of_songs'] == 2

        artists = catalog.query_artists()
        assert artists[0]['number_of_tracks'] == 2
        assert artists[0]['number_of_albums'] == 1
