"""
Session Processing Pipeline for TheraScribe
===========================================

This module provides the orchestration layer that turns a recorded therapy
session into a clinical report.

Architecture Pattern: Pipeline
------------------------------
A pipeline is a series of processing stages where:
1. Each stage transforms data
2. Output of one stage is input to the next
3. Stages are independent and reusable

Our Pipeline:
Audio bytes -> [Transcription job] -> [Poller] -> Transcript -> [Report Generator] -> ClinicalReport

Progress reported to the caller:
    transcription 10  -> before the recording is submitted
    transcription 30  -> job accepted, polling starts
    analysis      60  -> transcript ready, report generation starts
    complete      100 -> report ready

The run is all-or-nothing: any stage failure propagates to the caller and
no partial result is returned. A recording with no speech is not a failure:
the run completes with a "not generated" report.
"""

import asyncio
import inspect
import logging
import uuid
from datetime import datetime
from typing import Awaitable, Callable, Optional, Union

from therascribe.config import Settings, get_settings
from therascribe.core.job_poller import JobPoller
from therascribe.core.report_generator import (
    ReportGeneratorProtocol,
    create_report_generator,
    resolve_report_format,
)
from therascribe.core.transcription_client import (
    TranscriptionClientProtocol,
    create_transcription_client,
)
from therascribe.exceptions import TheraScribeError
from therascribe.models import (
    ClinicalReport,
    ProcessingProgress,
    ProcessingStage,
    ReportFormat,
    SessionResult,
)


logger = logging.getLogger(__name__)


# Type aliases for progress callbacks
ProgressCallback = Callable[[ProcessingProgress], None]
AsyncProgressCallback = Callable[[ProcessingProgress], Awaitable[None]]


class _ProgressReporter:
    """
    Per-run progress notifier.

    Never reports a percent lower than one already reported, and isolates
    the pipeline from callback failures.
    """

    def __init__(
        self,
        run_id: str,
        callback: Optional[Union[ProgressCallback, AsyncProgressCallback]]
    ):
        self.run_id = run_id
        self.callback = callback
        self.last_percent = 0

    async def notify(self, stage: ProcessingStage, percent: int) -> None:
        if percent < self.last_percent:
            logger.debug(
                f"[{self.run_id}] Ignoring progress {percent}% after {self.last_percent}%"
            )
            return
        self.last_percent = percent
        logger.debug(f"[{self.run_id}] Progress: {stage.value} {percent}%")

        if not self.callback:
            return
        try:
            outcome = self.callback(ProcessingProgress(stage=stage, percent=percent))
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"[{self.run_id}] Progress callback failed: {e}")


class SessionProcessingOrchestrator:
    """
    Main pipeline for processing session recordings into clinical reports.

    Design Principles:
    -----------------
    1. Dependency Injection: Services injected for testability
    2. Single Responsibility: Only orchestrates, doesn't implement
    3. No per-run state on the instance, so concurrent runs are independent

    Usage:
        orchestrator = SessionProcessingOrchestrator()
        result = await orchestrator.process(audio_bytes, report_format="DAP")
        print(result.report.to_formatted_string())
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transcription_client: Optional[TranscriptionClientProtocol] = None,
        poller: Optional[JobPoller] = None,
        report_generator: Optional[ReportGeneratorProtocol] = None,
    ):
        """
        Initialize the orchestrator with optional dependencies.

        Args:
            settings: Library settings
            transcription_client: Transcription job client
            poller: Job poller (built around the client if not provided)
            report_generator: Clinical report generation service
        """
        self.settings = settings or get_settings()

        # Lazy initialization - services created when first needed
        self._transcription_client = transcription_client
        self._poller = poller
        self._report_generator = report_generator

        logger.info("SessionProcessingOrchestrator initialized")

    @property
    def transcription_client(self) -> TranscriptionClientProtocol:
        """Lazy-load the transcription client."""
        if self._transcription_client is None:
            self._transcription_client = create_transcription_client(settings=self.settings)
        return self._transcription_client

    @property
    def poller(self) -> JobPoller:
        """Lazy-load the job poller."""
        if self._poller is None:
            self._poller = JobPoller(self.transcription_client, settings=self.settings)
        return self._poller

    @property
    def report_generator(self) -> ReportGeneratorProtocol:
        """Lazy-load the report generator."""
        if self._report_generator is None:
            self._report_generator = create_report_generator(settings=self.settings)
        return self._report_generator

    async def process(
        self,
        audio: bytes,
        on_progress: Optional[Union[ProgressCallback, AsyncProgressCallback]] = None,
        report_format: Union[ReportFormat, str, None] = None,
        mime_type: str = "audio/wav",
    ) -> SessionResult:
        """
        Process a session recording into a clinical report.

        Args:
            audio: The recording (WAV by default)
            on_progress: Optional callback receiving ProcessingProgress.
                         Can be sync or async.
            report_format: SOAP, BIRP, DAP or "Scribbled Notes"
                           (defaults to settings.default_report_format)
            mime_type: MIME type of the recording

        Returns:
            SessionResult with the transcript and the report

        Raises:
            ValidationError, ConfigurationError, RemoteServiceError,
            TranscriptionFailedError, TimedOutError, MalformedGenerationError
            from the failing stage; asyncio.CancelledError if cancelled.
        """
        run_id = str(uuid.uuid4())[:8]
        start_time = datetime.now()
        progress = _ProgressReporter(run_id, on_progress)
        fmt = resolve_report_format(report_format, self.settings)

        logger.info(f"[{run_id}] Starting session processing ({len(audio)} bytes, {fmt.value})")

        try:
            # Stage 1: Transcription
            await progress.notify(ProcessingStage.TRANSCRIPTION, 10)
            job_id = await self.transcription_client.submit(audio, mime_type)
            logger.info(f"[{run_id}] Transcription job {job_id} submitted")

            await progress.notify(ProcessingStage.TRANSCRIPTION, 30)
            transcript = await self.poller.poll(job_id)
            logger.info(f"[{run_id}] Transcription complete: {len(transcript)} chars")

            # Stage 2: Report generation
            await progress.notify(ProcessingStage.ANALYSIS, 60)
            if not transcript.strip():
                logger.warning(f"[{run_id}] Transcript is empty, skipping report generation")
                report = ClinicalReport.not_generated(fmt)
            else:
                report = await self.report_generator.agenerate(transcript, fmt)
            if not report.generated:
                logger.warning(f"[{run_id}] No {fmt.value} content was generated")

            await progress.notify(ProcessingStage.COMPLETE, 100)

        except asyncio.CancelledError:
            logger.info(f"[{run_id}] Session processing cancelled")
            raise

        except TheraScribeError as e:
            logger.error(f"[{run_id}] Session processing failed: {e.message}")
            raise

        except Exception:
            logger.exception(f"[{run_id}] Unexpected error in session processing")
            raise

        elapsed = (datetime.now() - start_time).total_seconds()
        logger.info(f"[{run_id}] Session processing completed in {elapsed:.1f}s")

        return SessionResult(
            run_id=run_id,
            job_id=job_id,
            transcript=transcript,
            report=report,
            processing_time_seconds=elapsed,
        )

    async def transcribe_only(self, audio: bytes, mime_type: str = "audio/wav") -> str:
        """
        Transcribe a recording without generating a report.

        Useful for:
        - Reviewing a transcript before choosing a note format
        - Sessions where no note is needed
        """
        logger.info(f"Transcribe-only mode for {len(audio)} bytes")
        job_id = await self.transcription_client.submit(audio, mime_type)
        return await self.poller.poll(job_id)

    async def generate_report_only(
        self,
        transcript: str,
        report_format: Union[ReportFormat, str, None] = None
    ) -> ClinicalReport:
        """
        Generate a report from an existing transcript.

        Useful for:
        - Re-processing a stored transcript in another format
        - Manual transcript input
        """
        logger.info("Report-only mode for provided transcript")
        return await self.report_generator.agenerate(transcript, report_format)


# =============================================================================
# Factory Function
# =============================================================================

def create_orchestrator(
    settings: Optional[Settings] = None,
    use_mocks: bool = False
) -> SessionProcessingOrchestrator:
    """
    Factory function to create a configured orchestrator.

    Args:
        settings: Library settings
        use_mocks: If True, wires the mock transcription client and report
                   generator (for testing and demos)

    Returns:
        SessionProcessingOrchestrator ready to use
    """
    settings = settings or get_settings()
    if use_mocks:
        return SessionProcessingOrchestrator(
            settings=settings,
            transcription_client=create_transcription_client(settings, use_mock=True),
            report_generator=create_report_generator(settings, use_mock=True),
        )
    return SessionProcessingOrchestrator(settings=settings)
