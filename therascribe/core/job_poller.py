"""
Transcription Job Poller
========================

Drives a submitted transcription job to a terminal state by querying its
status with exponential backoff.

Backoff schedule (defaults):
    status check 1 -> not ready -> wait 2000 ms
    status check 2 -> not ready -> wait 3000 ms
    status check 3 -> not ready -> wait 4500 ms
    ...                             (x1.5 each time, capped at 10000 ms)
    status check 30 -> not ready -> TimedOutError (no final wait)

Waiting goes through an injectable Clock so tests can run the full
schedule instantly and inspect the exact delays.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field

from therascribe.config import Settings, get_settings
from therascribe.core.transcription_client import TranscriptionClientProtocol
from therascribe.exceptions import (
    RemoteServiceError,
    TimedOutError,
    TranscriptionFailedError,
    TranscriptionNotReadyError,
)
from therascribe.models import JobState, RemoteJobState, TranscriptionJob


logger = logging.getLogger(__name__)


# =============================================================================
# Clock
# =============================================================================

class Clock(Protocol):
    """Something that can wait."""

    async def sleep(self, seconds: float) -> None:
        ...


class AsyncioClock:
    """Real clock backed by asyncio.sleep (cancellable)."""

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class RecordingClock:
    """
    Clock that returns immediately and remembers every requested wait.

    Usage in tests:
        clock = RecordingClock()
        poller = JobPoller(client, clock=clock)
        ...
        assert clock.sleeps == [2.0, 3.0]
    """

    def __init__(self):
        self.sleeps: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        # Yield to the loop so cancellation and other tasks can interleave
        await asyncio.sleep(0)


# =============================================================================
# Backoff Policy
# =============================================================================

class BackoffPolicy(BaseModel):
    """
    Exponential backoff parameters for status polling.

    Attributes:
        initial_delay_ms: Wait after the first not-ready status
        multiplier: Factor applied after every not-ready status
        max_delay_ms: Cap for any single wait
        max_attempts: Status checks allowed before timing out
    """
    initial_delay_ms: float = Field(default=2000, gt=0)
    multiplier: float = Field(default=1.5, ge=1.0)
    max_delay_ms: float = Field(default=10000, gt=0)
    max_attempts: int = Field(default=30, gt=0)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "BackoffPolicy":
        settings = settings or get_settings()
        return cls(
            initial_delay_ms=settings.poll_initial_delay_ms,
            multiplier=settings.poll_backoff_multiplier,
            max_delay_ms=settings.poll_max_delay_ms,
            max_attempts=settings.poll_max_attempts,
        )

    def next_delay(self, delay_ms: float) -> float:
        """The wait that follows a wait of delay_ms."""
        return min(delay_ms * self.multiplier, self.max_delay_ms)

    def delay_for(self, index: int) -> float:
        """
        Wait taken after the (index + 1)-th not-ready status.

        delay_for(0) is the initial delay (capped); each later wait is the
        previous one times the multiplier, never above max_delay_ms.
        """
        delay = min(self.initial_delay_ms, self.max_delay_ms)
        for _ in range(index):
            delay = self.next_delay(delay)
        return delay

    def schedule(self) -> List[float]:
        """Every wait a job that never finishes would take, in order."""
        return [self.delay_for(i) for i in range(self.max_attempts - 1)]


# =============================================================================
# Poller
# =============================================================================

class JobPoller:
    """
    Polls a transcription job until it completes, fails or times out.

    Usage:
        poller = JobPoller(client)
        transcript = await poller.poll(job_id)

    Each call to poll() tracks its own TranscriptionJob, so one poller can
    serve any number of concurrent jobs.
    """

    def __init__(
        self,
        client: TranscriptionClientProtocol,
        policy: Optional[BackoffPolicy] = None,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
    ):
        self.client = client
        self.policy = policy or BackoffPolicy.from_settings(settings)
        self.clock = clock or AsyncioClock()

    async def poll(self, job_id: str) -> str:
        """
        Wait for a job and return its transcript text.

        Raises:
            TranscriptionFailedError: The service reported the job failed
            TimedOutError: The attempt budget ran out
            RemoteServiceError: A status check itself failed
        """
        job = TranscriptionJob(job_id=job_id)
        await self.run(job)
        return job.transcript or ""

    async def run(self, job: TranscriptionJob) -> TranscriptionJob:
        """
        Poll until the job reaches a terminal state, updating it in place.

        The job carries every observed attempt and wait, which is what
        callers and tests inspect.
        """
        job.state = JobState.POLLING
        delay = min(self.policy.initial_delay_ms, self.policy.max_delay_ms)

        try:
            while True:
                job.attempts += 1
                ready, text = await self._check(job)
                if ready:
                    job.transcript = text
                    self._finish(job, JobState.COMPLETED)
                    logger.info(
                        f"Transcription {job.job_id} completed after {job.attempts} attempts"
                    )
                    return job

                if job.attempts >= self.policy.max_attempts:
                    self._finish(job, JobState.TIMED_OUT)
                    logger.warning(
                        f"Transcription {job.job_id} timed out after {job.attempts} attempts"
                    )
                    raise TimedOutError(job.job_id, job.attempts)

                logger.debug(
                    f"Transcription {job.job_id} not ready "
                    f"(attempt {job.attempts}), waiting {delay:.0f} ms"
                )
                job.delays_ms.append(delay)
                await self.clock.sleep(delay / 1000.0)
                delay = self.policy.next_delay(delay)

        except asyncio.CancelledError:
            self._finish(job, JobState.CANCELLED)
            logger.info(f"Polling for transcription {job.job_id} cancelled")
            raise

        except TranscriptionFailedError as e:
            job.error_detail = e.detail
            self._finish(job, JobState.FAILED)
            logger.error(f"Transcription {job.job_id} failed: {e.detail}")
            raise

        except RemoteServiceError as e:
            job.error_detail = e.message
            self._finish(job, JobState.FAILED)
            logger.error(f"Status check for {job.job_id} failed: {e.message}")
            raise

    async def _check(self, job: TranscriptionJob) -> tuple[bool, Optional[str]]:
        """One status check. Returns (ready, transcript)."""
        try:
            status = await self.client.fetch_status(job.job_id)
        except TranscriptionNotReadyError:
            return False, None

        if status.state == RemoteJobState.DONE:
            return True, status.transcript_text or ""
        if status.state == RemoteJobState.FAILED:
            raise TranscriptionFailedError(job.job_id, status.error_detail or "Unknown error")
        return False, None

    @staticmethod
    def _finish(job: TranscriptionJob, state: JobState) -> None:
        job.state = state
        job.completed_at = datetime.now()
