import asyncio
import threading

import numpy as np
import pytest

from therascribe.core.features import ArrayAudioSource, FeatureExtractor, compute_mfcc
from therascribe.exceptions import ValidationError

from conftest import run, tone


async def collect(extractor):
    return [vector async for vector in extractor.features()]


def test_one_vector_per_window(settings):
    """
    Verifies that:
    1. One second of 16 kHz audio yields ten vectors (100 ms cadence).
    2. Every vector has n_mfcc finite coefficients.
    """
    extractor = FeatureExtractor(ArrayAudioSource(tone(440, 1.0)), settings=settings)

    vectors = run(collect(extractor))

    assert extractor.cadence_ms == pytest.approx(100.0)
    assert len(vectors) == 10
    for vector in vectors:
        assert vector.shape == (settings.n_mfcc,)
        assert np.all(np.isfinite(vector))


def test_short_trailing_window_ends_the_stream(settings):
    extractor = FeatureExtractor(ArrayAudioSource(tone(440, 0.15)), settings=settings)

    vectors = run(collect(extractor))

    assert len(vectors) == 1


def test_features_are_deterministic(settings):
    first = run(collect(FeatureExtractor(ArrayAudioSource(tone(440, 0.5)), settings=settings)))
    second = run(collect(FeatureExtractor(ArrayAudioSource(tone(440, 0.5)), settings=settings)))

    for a, b in zip(first, second):
        assert np.array_equal(a, b)


def test_different_voices_give_different_vectors(settings):
    low = compute_mfcc(tone(440, 0.1), 16000)
    high = compute_mfcc(tone(1500, 0.1), 16000)

    assert np.linalg.norm(low - high) > 1.0


def test_stream_is_shared_and_not_restartable(settings):
    """
    Verifies that:
    1. Every features() call returns the same stream.
    2. A consumer that stops early leaves the rest for the next consumer.
    3. Once the stream has ended it stays ended.
    """
    extractor = FeatureExtractor(ArrayAudioSource(tone(440, 0.5)), settings=settings)

    async def scenario():
        assert extractor.features() is extractor.features()
        head = []
        async for vector in extractor.features():
            head.append(vector)
            if len(head) == 2:
                break
        tail = await collect(extractor)
        again = await collect(extractor)
        return head, tail, again

    head, tail, again = run(scenario())

    assert len(head) == 2
    assert len(tail) == 3
    assert again == []


def test_source_released_when_stream_ends(settings):
    source = ArrayAudioSource(tone(440, 0.2))
    extractor = FeatureExtractor(source, settings=settings)

    run(collect(extractor))

    assert source.closed
    assert not extractor.is_running


def test_context_manager_releases_source_on_error(settings):
    source = ArrayAudioSource(tone(440, 1.0))

    async def scenario():
        async with FeatureExtractor(source, settings=settings) as extractor:
            assert extractor.is_running
            async for _ in extractor.features():
                raise RuntimeError("consumer crashed")

    with pytest.raises(RuntimeError):
        run(scenario())

    assert source.closed


def test_stop_is_idempotent(settings):
    source = ArrayAudioSource(tone(440, 1.0))
    extractor = FeatureExtractor(source, settings=settings)

    run(extractor.start())
    extractor.stop()
    extractor.stop()

    assert source.closed
    assert run(collect(extractor)) == []


def test_compute_mfcc_rejects_bad_input():
    with pytest.raises(ValidationError):
        compute_mfcc(np.array([]), 16000)
    with pytest.raises(ValidationError):
        compute_mfcc(tone(440, 0.1), 16000, n_mfcc=30, n_mels=26)


def test_stop_before_start_never_opens_the_source(settings):
    source = ArrayAudioSource(tone(440, 1.0))
    extractor = FeatureExtractor(source, settings=settings)

    extractor.stop()
    vectors = run(collect(extractor))
    run(extractor.start())

    assert vectors == []
    assert not source.is_open
    assert not extractor.is_running


class GatedSource(ArrayAudioSource):
    """Array source whose reads block until the test lets them through."""

    def __init__(self, samples):
        super().__init__(samples)
        self.reading = threading.Event()
        self.release = threading.Event()
        self.in_read = False
        self.closed_during_read = False

    def read(self, num_samples):
        self.in_read = True
        self.reading.set()
        self.release.wait(timeout=5)
        try:
            return super().read(num_samples)
        finally:
            self.in_read = False

    def close(self):
        if self.in_read:
            self.closed_during_read = True
        super().close()


def test_stop_during_read_defers_release(settings):
    """
    Verifies that:
    1. stop() while a read is blocked in a worker thread does not close the source.
    2. The stream ends once that read returns, without yielding its frame.
    3. The source is closed exactly after the read, never during it.
    """
    source = GatedSource(tone(440, 1.0))
    extractor = FeatureExtractor(source, settings=settings)

    async def first_vector():
        async for vector in extractor.features():
            return vector

    async def scenario():
        await extractor.start()
        pending = asyncio.create_task(first_vector())
        await asyncio.to_thread(source.reading.wait, 5)
        extractor.stop()
        closed_before_read_returned = source.closed
        source.release.set()
        assert await pending is None
        return closed_before_read_returned

    closed_before_read_returned = run(scenario())

    assert not closed_before_read_returned
    assert source.closed
    assert not source.closed_during_read
