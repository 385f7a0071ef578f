"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from exec_stage.config import Config  # noqa: E402

FIXTURES_DIR = Path(__file__).parent / "fixtures"
FAKE_STAGE = FIXTURES_DIR / "fake_stage.py"


@pytest.fixture
def fake_stage() -> list[str]:
    """argv prefix that runs the fake stage script with this interpreter."""
    return [sys.executable, str(FAKE_STAGE)]


@pytest.fixture
def config() -> Config:
    """Configuration with short teardown timeouts for testing."""
    return Config(term_timeout=0.5, kill_timeout=0.3)


@pytest.fixture
def diagnostics() -> list[str]:
    """Collects the lines passed to a diagnostic sink."""
    return []
