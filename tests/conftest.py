"""
Shared test fixtures and configuration.
"""

import textwrap
from pathlib import Path

import pytest

from fakes import NoSleep


@pytest.fixture
def no_sleep() -> NoSleep:
    return NoSleep()


@pytest.fixture
def write_stack(tmp_path: Path):
    """Write a stack.yml (plus .env and app config) under tmp_path."""

    def _write(content: str) -> Path:
        config = tmp_path / "stack.yml"
        config.write_text(textwrap.dedent(content))
        return config

    return _write
