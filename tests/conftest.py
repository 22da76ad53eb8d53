"""Shared pytest fixtures for doing-log tests."""

import tempfile
from pathlib import Path

import pytest

from doing_log.config import DoingConfig
from doing_log.engine import DoingEngine
from doing_log.taskpaper import parse_doing

SAMPLE = """\
Currently:
 - 2025-01-01 09:00 | Fix bug @urgent <11111111-1111-1111-1111-111111111111>
 - 2025-01-01 10:00 | Write docs @done(2025-01-01 11:00) <22222222-2222-2222-2222-222222222222>
"""


@pytest.fixture
def temp_home():
    """Create a temporary home directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_home):
    """Create a test configuration."""
    return DoingConfig(home=temp_home)


@pytest.fixture
def engine(config):
    """Create a test engine."""
    return DoingEngine(config)


@pytest.fixture
def sample_doing():
    """The two-entry file used across filter tests."""
    return parse_doing(SAMPLE)
