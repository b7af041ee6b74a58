# File: tests/conftest.py

import asyncio

import numpy as np
import pytest

from therascribe.config import get_settings_for_testing
from therascribe.core.job_poller import RecordingClock


@pytest.fixture
def settings(tmp_path):
    """Isolated settings: no real keys, a temp profile file, fast defaults."""
    return get_settings_for_testing(
        hume_api_key="test-key",
        hume_base_url="https://transcription.test/v0",
        profile_store_path=str(tmp_path / "profiles.json"),
    )


@pytest.fixture
def clock():
    """Clock that records waits instead of sleeping."""
    return RecordingClock()


def tone(frequency: float, seconds: float, sample_rate: int = 16000, amplitude: float = 0.5):
    """A pure sine tone, handy as a stand-in for one speaker's voice."""
    t = np.arange(int(seconds * sample_rate)) / sample_rate
    return amplitude * np.sin(2 * np.pi * frequency * t)


def run(coro):
    """Drive a coroutine to completion from a plain test function."""
    return asyncio.run(coro)


class BlockingClock:
    """Clock whose waits never finish; sets `waiting` when the first wait starts."""

    def __init__(self):
        self.waiting = None

    async def sleep(self, seconds: float) -> None:
        self.waiting.set()
        await asyncio.Event().wait()
