"""Pytest configuration and fixtures for minidispatch tests."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
import yaml

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_js(tmp_path: Path) -> Path:
    """Copy of the sample script in a scratch directory."""
    target = tmp_path / "sample.js"
    shutil.copy(FIXTURES / "sample.js", target)
    return target


@pytest.fixture
def sample_css(tmp_path: Path) -> Path:
    """Copy of the sample stylesheet in a scratch directory."""
    target = tmp_path / "sample.css"
    shutil.copy(FIXTURES / "sample.css", target)
    return target


@pytest.fixture
def temp_config_file() -> Generator[str, None, None]:
    """Create a temporary configuration file for testing."""
    test_config = {
        "logging": {
            "level": "DEBUG",
            "format": "text",
            "file": {"enabled": False},
            "console": {"enabled": True, "level": "DEBUG"},
        },
        "compressors": {
            "java": "java-test",
            "gzip_level": 9,
            "binaries": {"terser": "/opt/terser/bin/terser"},
        },
    }

    with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as tmp:
        yaml.dump(test_config, tmp)
        tmp_path = tmp.name

    yield tmp_path

    try:
        os.unlink(tmp_path)
    except (IOError, OSError):
        pass
