"""
Pytest configuration for the CHIP-8 test suite.

    python -m pytest                 # everything
    python -m pytest -m "not display"  # skip the pygame window tests

pygame is pointed at its dummy video/audio drivers so the display tests
run without a screen.
"""

import os

import pytest

os.environ.setdefault("SDL_VIDEODRIVER", "dummy")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers",
        "display: tests that open a pygame window (dummy SDL driver)")


@pytest.fixture
def rom_file(tmp_path):
    """Write a ROM image to a temp file and return its path as a str."""
    def _write(data: bytes, name: str = "test.ch8") -> str:
        path = tmp_path / name
        path.write_bytes(data)
        return str(path)
    return _write
