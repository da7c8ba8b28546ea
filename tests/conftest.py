"""Pytest configuration and shared fixtures."""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch):
    """Drop cached settings and any SPB_ overrides around each test."""
    from src.settings import get_settings

    for key in [k for k in os.environ if k.startswith("SPB_")]:
        monkeypatch.delenv(key, raising=False)
    get_settings.cache_clear()

    yield

    get_settings.cache_clear()
