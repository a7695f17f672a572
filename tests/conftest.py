"""Shared test fixtures."""

from pathlib import Path

import pytest

from reelcut.ffutil import Encoder
from reelcut.manifest import EncoderConfig

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def sample_manifest_path() -> Path:
    return FIXTURES_DIR / "sample_manifest.json"


@pytest.fixture
def encoder() -> Encoder:
    return Encoder(ffmpeg="ffmpeg", ffprobe="ffprobe")


@pytest.fixture
def config(tmp_path: Path) -> EncoderConfig:
    return EncoderConfig(temp_dir=tmp_path / "tmp")
