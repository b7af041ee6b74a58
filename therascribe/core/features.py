"""
Audio Feature Extraction
========================

Turns a live audio stream into a sequence of short-time cepstral feature
vectors (MFCCs), one per fixed-size analysis window.

The extractor owns the audio source for its whole lifetime and is used as
an async context manager so the device is released on every exit path:

    async with FeatureExtractor(MicrophoneSource()) as extractor:
        async for vector in extractor.features():
            ...

Audio sources are blocking (PortAudio reads block until a window of samples
is available), so reads are pushed to a worker thread with asyncio.to_thread
to keep the event loop responsive.
"""

import asyncio
import logging
import threading
from typing import AsyncIterator, Optional, Protocol

import librosa
import numpy as np

from therascribe.config import Settings, get_settings
from therascribe.exceptions import ValidationError


logger = logging.getLogger(__name__)


# A feature vector is a 1-D float64 array of cepstral coefficients
FeatureVector = np.ndarray


# =============================================================================
# Audio Sources
# =============================================================================

class AudioSource(Protocol):
    """
    Protocol for mono audio inputs.

    read() returns up to num_samples float samples in [-1, 1]. A None
    return or a short read means the stream has ended.
    """

    sample_rate: int

    def open(self) -> None:
        ...

    def read(self, num_samples: int) -> Optional[np.ndarray]:
        ...

    def close(self) -> None:
        ...


class ArrayAudioSource:
    """
    Audio source backed by an in-memory sample buffer.

    Useful for analysing an already decoded recording and for tests.
    """

    def __init__(self, samples, sample_rate: int = 16000):
        self.samples = np.asarray(samples, dtype=np.float64).reshape(-1)
        self.sample_rate = sample_rate
        self._position = 0
        self.is_open = False
        self.closed = False

    def open(self) -> None:
        self.is_open = True

    def read(self, num_samples: int) -> Optional[np.ndarray]:
        if not self.is_open:
            return None
        chunk = self.samples[self._position:self._position + num_samples]
        self._position += len(chunk)
        return chunk if len(chunk) else None

    def close(self) -> None:
        self.is_open = False
        self.closed = True


class MicrophoneSource:
    """
    Live microphone input via PyAudio (16-bit mono).

    PyAudio is imported when the source is opened, so the rest of the
    library works without the optional 'live' extra installed.

    PortAudio streams are not thread-safe: read() runs in a worker thread
    while close() may be called from the event loop, so both hold a lock.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        frames_per_buffer: int = 1600,
        device_index: Optional[int] = None,
    ):
        self.sample_rate = sample_rate
        self.frames_per_buffer = frames_per_buffer
        self.device_index = device_index
        self._audio = None
        self._stream = None
        self._lock = threading.Lock()

    def open(self) -> None:
        import pyaudio

        logger.info(f"Opening microphone input at {self.sample_rate} Hz")
        self._audio = pyaudio.PyAudio()
        try:
            self._stream = self._audio.open(
                format=pyaudio.paInt16,
                channels=1,
                rate=self.sample_rate,
                input=True,
                input_device_index=self.device_index,
                frames_per_buffer=self.frames_per_buffer,
            )
        except Exception:
            self._audio.terminate()
            self._audio = None
            raise

    def read(self, num_samples: int) -> Optional[np.ndarray]:
        with self._lock:
            if self._stream is None:
                return None
            try:
                raw = self._stream.read(num_samples, exception_on_overflow=False)
            except OSError as e:
                # Device unplugged
                logger.warning(f"Microphone read failed, ending stream: {e}")
                return None
        return np.frombuffer(raw, dtype=np.int16).astype(np.float64) / 32768.0

    def close(self) -> None:
        with self._lock:
            if self._stream is not None:
                self._stream.stop_stream()
                self._stream.close()
                self._stream = None
            if self._audio is not None:
                self._audio.terminate()
                self._audio = None
                logger.info("Microphone released")


# =============================================================================
# MFCC Computation
# =============================================================================

def compute_mfcc(
    frame: np.ndarray,
    sample_rate: int,
    n_mfcc: int = 13,
    n_mels: int = 26,
) -> FeatureVector:
    """
    Compute MFCCs for one analysis window.

    The whole window is a single STFT frame (Hann window, no centering),
    so each window maps to exactly one vector.

    Args:
        frame: Mono samples for a single window
        sample_rate: Sample rate of the frame in Hz
        n_mfcc: Coefficients to keep
        n_mels: Mel bands before the DCT

    Returns:
        Array of n_mfcc finite coefficients
    """
    frame = np.asarray(frame, dtype=np.float64).reshape(-1)
    if frame.size == 0:
        raise ValidationError("cannot compute features of an empty frame")
    if n_mfcc > n_mels:
        raise ValidationError(
            "n_mfcc must not exceed n_mels",
            n_mfcc=n_mfcc,
            n_mels=n_mels,
        )

    mfcc = librosa.feature.mfcc(
        y=frame,
        sr=sample_rate,
        n_mfcc=n_mfcc,
        n_mels=n_mels,
        n_fft=frame.size,
        hop_length=frame.size,
        center=False,
    )
    return mfcc[:, 0]


# =============================================================================
# Feature Extractor
# =============================================================================

class FeatureExtractor:
    """
    Streams feature vectors from an audio source at a fixed cadence.

    The sequence is lazy, infinite for a live source, and can be consumed
    only once. It ends quietly when the source ends; callers decide what
    early termination means for them.
    """

    def __init__(
        self,
        source: AudioSource,
        settings: Optional[Settings] = None,
        window_size: Optional[int] = None,
    ):
        self.settings = settings or get_settings()
        self.source = source
        self.sample_rate = getattr(source, "sample_rate", None) or self.settings.sample_rate
        self.window_size = window_size or self.settings.feature_window_size
        self._opened = False
        self._stopped = False
        self._closed = False
        self._reading = False
        self._stream = None

    @property
    def cadence_ms(self) -> float:
        """Time covered by one feature vector in milliseconds."""
        return self.window_size * 1000.0 / self.sample_rate

    @property
    def is_running(self) -> bool:
        return self._opened and not self._stopped

    async def __aenter__(self) -> "FeatureExtractor":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.stop()

    async def start(self) -> None:
        """Open the underlying audio source. A stopped extractor never reopens."""
        if self._opened or self._stopped:
            return
        await asyncio.to_thread(self.source.open)
        self._opened = True
        if self._stopped:
            # stop() arrived while the device was opening
            self._release()
            return
        logger.info(
            f"Feature extraction started: {self.window_size} samples/window "
            f"({self.cadence_ms:.0f} ms cadence)"
        )

    def stop(self) -> None:
        """
        Stop the feature stream and release the audio source.

        Safe to call more than once, and before start(). If a read is in
        flight on a worker thread, the source is closed by the stream once
        that read returns, never underneath it.
        """
        if self._stopped:
            return
        self._stopped = True
        if self._reading:
            logger.debug("Stop requested during a read, release deferred")
            return
        self._release()

    def _release(self) -> None:
        if not self._opened or self._closed:
            return
        self._closed = True
        self.source.close()
        logger.info("Feature extraction stopped, audio source released")

    def features(self) -> AsyncIterator[FeatureVector]:
        """
        The extractor's feature stream, one vector per analysis window.

        Every call returns the same stream, so enrollment and live
        classification share one cursor. Once it ends it stays ended.
        """
        if self._stream is None:
            self._stream = self._generate()
        return self._stream

    async def _generate(self) -> AsyncIterator[FeatureVector]:
        if not self._opened:
            await self.start()

        emitted = 0
        try:
            while self.is_running:
                self._reading = True
                try:
                    frame = await asyncio.to_thread(self.source.read, self.window_size)
                finally:
                    self._reading = False
                if self._stopped:
                    break
                if frame is None or len(frame) < self.window_size:
                    logger.debug("Audio stream ended")
                    break
                vector = compute_mfcc(
                    frame,
                    self.sample_rate,
                    n_mfcc=self.settings.n_mfcc,
                    n_mels=self.settings.n_mels,
                )
                emitted += 1
                yield vector
        finally:
            logger.debug(f"Feature stream closed after {emitted} vectors")
            self._stopped = True
            self._release()
