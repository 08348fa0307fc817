"""Tests for session and notification rendering."""

from PIL import Image

from flowmedia.artwork import Artwork
from flowmedia.playback_state import PlaybackState, SessionStatus
from flowmedia.projector import (
    ActionTargets,
    render_notification,
    render_session,
)

TARGETS = ActionTargets()


def playing_state(**kwargs):
    fields = dict(title="Song", artist="Band", album="Record", is_playing=True,
                  position_ms=1500, duration_ms=180000, status=SessionStatus.ACTIVE,
                  last_art_key="/c.jpg|/t.mp3")
    fields.update(kwargs)
    return PlaybackState(**fields)


class TestRenderSession:

    def test_metadata(self):
        descriptor = render_session(playing_state(), TARGETS)
        metadata = descriptor.metadata
        assert metadata['xesam:title'] == "Song"
        assert metadata['xesam:artist'] == ["Band"]
        assert metadata['xesam:album'] == "Record"
        assert metadata['mpris:length'] == 180_000_000
        assert metadata['mpris:trackid'].startswith('/org/mpris/MediaPlayer2/Track/')
        assert 'mpris:artUrl' not in metadata

    def test_playing_and_paused(self):
        playing = render_session(playing_state(), TARGETS)
        assert playing.playback_status == 'Playing'
        assert playing.rate == 1.0
        assert playing.position_us == 1_500_000

        paused = render_session(playing_state(is_playing=False), TARGETS)
        assert paused.playback_status == 'Paused'
        assert paused.rate == 0.0

    def test_all_controls_enabled(self):
        props = render_session(playing_state(), TARGETS).properties()
        for key in ('CanPlay', 'CanPause', 'CanGoNext', 'CanGoPrevious', 'CanSeek', 'CanControl'):
            assert props[key] is True

    def test_art_url(self, temp_dir):
        artwork = Artwork(key='k', image=Image.new('RGB', (4, 4)), path=str(temp_dir / 'np.jpg'))
        metadata = render_session(playing_state(artwork=artwork), TARGETS).metadata
        assert metadata['mpris:artUrl'] == (temp_dir / 'np.jpg').as_uri()

    def test_identical_state_renders_identically(self):
        assert render_session(playing_state(), TARGETS) == render_session(playing_state(), TARGETS)
        assert render_notification(playing_state(), TARGETS) == render_notification(playing_state(), TARGETS)

    def test_track_id_changes_with_track(self):
        first = render_session(playing_state(), TARGETS).metadata['mpris:trackid']
        second = render_session(playing_state(title="Other"), TARGETS).metadata['mpris:trackid']
        assert first != second


class TestRenderNotification:

    def test_compact_actions_while_playing(self):
        payload = render_notification(playing_state(), TARGETS)
        assert [key for key, _ in payload.actions[:3]] == ['previous', 'pause', 'next']
        assert payload.default_action == TARGETS.open
        assert payload.resident is True

    def test_compact_actions_while_paused(self):
        payload = render_notification(playing_state(is_playing=False), TARGETS)
        assert [key for key, _ in payload.actions[:3]] == ['previous', 'play', 'next']
        assert payload.resident is False

    def test_text(self):
        payload = render_notification(playing_state(), TARGETS, app_name="Flow Playback")
        assert payload.app_name == "Flow Playback"
        assert payload.summary == "Song"
        assert payload.body == "Band\nRecord"
        assert render_notification(playing_state(artist=""), TARGETS).body == "Record"

    def test_hints(self, temp_dir):
        artwork = Artwork(key='k', image=Image.new('RGB', (4, 4)), path=str(temp_dir / 'np.jpg'))
        hints = render_notification(playing_state(artwork=artwork), TARGETS).hints()
        assert hints['urgency'] == 0
        assert hints['category'] == 'x-gnome.music'
        assert hints['image-path'] == str(temp_dir / 'np.jpg')

        assert 'image-path' not in render_notification(playing_state(), TARGETS).hints()

    def test_flat_actions(self):
        payload = render_notification(playing_state(), TARGETS)
        flat = payload.flat_actions()
        assert flat[:2] == ['previous', 'Previous']
        assert len(flat) == 2 * len(payload.actions)
