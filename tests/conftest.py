"""Pytest configuration and fixtures."""

import io
import pytest
import tempfile
import shutil
import wave
from pathlib import Path

# Mock GLib and D-Bus before imports
import sys
from unittest.mock import MagicMock

# Mock gi.repository
sys.modules['gi'] = MagicMock()
sys.modules['gi.repository'] = MagicMock()
sys.modules['gi.repository.GLib'] = MagicMock()

# Mock dbus
sys.modules['dbus'] = MagicMock()
sys.modules['dbus.service'] = MagicMock()
sys.modules['dbus.mainloop'] = MagicMock()
sys.modules['dbus.mainloop.glib'] = MagicMock()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def mock_config(monkeypatch, temp_dir):
    """Configuration rooted in temporary XDG directories."""
    from flowmedia.config import Config, get_config

    monkeypatch.setenv('XDG_CONFIG_HOME', str(temp_dir / 'config'))
    monkeypatch.setenv('XDG_CACHE_HOME', str(temp_dir / 'cache'))
    monkeypatch.setenv('XDG_DATA_HOME', str(temp_dir / 'data'))

    Config.reset()
    yield get_config()
    Config.reset()


@pytest.fixture
def make_wav():
    """Factory writing a silent mono WAV file of the given length."""
    def _make(path: Path, seconds: float = 1.0, rate: int = 8000) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with wave.open(str(path), 'wb') as wav:
            wav.setnchannels(1)
            wav.setsampwidth(2)
            wav.setframerate(rate)
            wav.writeframes(b'\x00\x00' * int(seconds * rate))
        return path
    return _make


@pytest.fixture
def png_bytes():
    """Factory returning PNG bytes of a solid image of the given size."""
    from PIL import Image

    def _make(width: int, height: int, color=(200, 40, 40)) -> bytes:
        buffer = io.BytesIO()
        Image.new('RGB', (width, height), color).save(buffer, format='PNG')
        return buffer.getvalue()
    return _make
