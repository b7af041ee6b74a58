import asyncio
import json

import pytest
from langchain_core.language_models import FakeListLLM

from therascribe.config import get_settings_for_testing
from therascribe.core.job_poller import BackoffPolicy, JobPoller
from therascribe.core.report_generator import MockReportGenerator, OllamaReportGenerator
from therascribe.core.transcription_client import MockTranscriptionClient
from therascribe.exceptions import (
    MalformedGenerationError,
    TimedOutError,
    TranscriptionFailedError,
    ValidationError,
)
from therascribe.models import ProcessingStage, ReportFormat
from therascribe.pipeline import SessionProcessingOrchestrator, create_orchestrator

from conftest import BlockingClock, run


AUDIO = b"RIFF\x00\x00\x00\x00WAVEfmt "

SOAP_RESPONSE = json.dumps({
    "Subjective": ["Client reports improved mood."],
    "Objective": ["Calm affect, good eye contact."],
    "Assessment": ["Depressive symptoms easing."],
    "Plan": ["Continue weekly sessions."],
})


def build(
    settings,
    clock,
    statuses,
    llm_responses=None,
    report_generator=None,
    max_attempts=30,
    transcript="Patient reports improved mood.",
):
    client = MockTranscriptionClient(statuses=statuses, transcript=transcript)
    poller = JobPoller(client, policy=BackoffPolicy(max_attempts=max_attempts), clock=clock)
    if report_generator is None:
        report_generator = OllamaReportGenerator(
            settings=settings,
            llm=FakeListLLM(responses=llm_responses or [SOAP_RESPONSE]),
        )
    orchestrator = SessionProcessingOrchestrator(
        settings=settings,
        transcription_client=client,
        poller=poller,
        report_generator=report_generator,
    )
    return orchestrator, client


def test_end_to_end_soap(settings, clock):
    """
    Verifies that:
    1. Two pending statuses then done produce a SOAP report.
    2. Progress is reported as 10, 30, 60, 100 with the right stages.
    3. The poller waited 2 s and then 3 s.
    """
    orchestrator, client = build(settings, clock, ["pending", "pending", "done"])
    progress = []

    result = run(orchestrator.process(AUDIO, on_progress=progress.append))

    assert result.transcript == "Patient reports improved mood."
    assert result.job_id == client.submitted[0]
    assert result.report.format == ReportFormat.SOAP
    assert result.report.sections["Subjective"] == ["Client reports improved mood."]
    assert result.processing_time_seconds >= 0
    assert [(p.stage, p.percent) for p in progress] == [
        (ProcessingStage.TRANSCRIPTION, 10),
        (ProcessingStage.TRANSCRIPTION, 30),
        (ProcessingStage.ANALYSIS, 60),
        (ProcessingStage.COMPLETE, 100),
    ]
    assert clock.sleeps == [2.0, 3.0]


def test_async_progress_callback(settings, clock):
    orchestrator, _ = build(settings, clock, ["done"])
    seen = []

    async def on_progress(progress):
        await asyncio.sleep(0)
        seen.append(progress.percent)

    run(orchestrator.process(AUDIO, on_progress=on_progress))

    assert seen == [10, 30, 60, 100]


def test_failing_progress_callback_does_not_break_the_run(settings, clock):
    orchestrator, _ = build(settings, clock, ["done"])

    def on_progress(progress):
        raise RuntimeError("UI went away")

    result = run(orchestrator.process(AUDIO, on_progress=on_progress))

    assert result.report.generated


def test_failed_transcription_skips_generation(settings, clock):
    generator = MockReportGenerator(settings=settings)
    orchestrator, _ = build(settings, clock, ["failed"], report_generator=generator)
    progress = []

    with pytest.raises(TranscriptionFailedError):
        run(orchestrator.process(AUDIO, on_progress=progress.append))

    assert generator.calls == []
    assert [p.percent for p in progress] == [10, 30]


def test_timed_out_transcription(settings, clock):
    orchestrator, client = build(settings, clock, ["pending"], max_attempts=3)

    with pytest.raises(TimedOutError):
        run(orchestrator.process(AUDIO))

    assert len(client.status_calls) == 3


def test_malformed_report_fails_the_run(settings, clock):
    orchestrator, _ = build(settings, clock, ["done"], llm_responses=['{"Summary": ["x"]}'])

    with pytest.raises(MalformedGenerationError):
        run(orchestrator.process(AUDIO))


def test_not_generated_report_completes(settings, clock):
    orchestrator, _ = build(settings, clock, ["done"], llm_responses=["No report generated."])
    progress = []

    result = run(orchestrator.process(AUDIO, on_progress=progress.append, report_format="DAP"))

    assert not result.report.generated
    assert result.report.format == ReportFormat.DAP
    assert progress[-1].percent == 100


def test_empty_transcript_yields_not_generated_report(settings, clock):
    """
    Verifies that:
    1. A job that finishes with no text still completes the run.
    2. The report generator is never called for a blank transcript.
    3. The report is the "not generated" value in the requested format.
    """
    generator = MockReportGenerator(settings=settings)
    orchestrator, _ = build(settings, clock, ["done"], report_generator=generator, transcript="")
    progress = []

    result = run(orchestrator.process(AUDIO, on_progress=progress.append, report_format="BIRP"))

    assert result.transcript == ""
    assert not result.report.generated
    assert result.report.format == ReportFormat.BIRP
    assert generator.calls == []
    assert [p.percent for p in progress] == [10, 30, 60, 100]


def test_blank_transcript_still_rejected_by_report_only(settings, clock):
    orchestrator, _ = build(settings, clock, ["done"], report_generator=MockReportGenerator(settings=settings))

    with pytest.raises(ValidationError):
        run(orchestrator.generate_report_only("  \n", ReportFormat.SOAP))


def test_empty_audio_is_rejected(settings, clock):
    orchestrator, client = build(settings, clock, ["done"])

    with pytest.raises(ValidationError):
        run(orchestrator.process(b""))

    assert client.status_calls == []


def test_cancellation_during_polling(settings):
    generator = MockReportGenerator(settings=settings)
    clock = BlockingClock()
    orchestrator, client = build(settings, clock, ["pending"], report_generator=generator)

    async def scenario():
        clock.waiting = asyncio.Event()
        task = asyncio.create_task(orchestrator.process(AUDIO))
        await clock.waiting.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    run(scenario())

    assert len(client.status_calls) == 1
    assert generator.calls == []


def test_concurrent_runs_are_independent(settings, clock):
    generator = MockReportGenerator(settings=settings)
    orchestrator, client = build(settings, clock, ["pending", "done"], report_generator=generator)

    async def scenario():
        return await asyncio.gather(
            orchestrator.process(AUDIO, report_format="SOAP"),
            orchestrator.process(AUDIO, report_format="Scribbled Notes"),
        )

    first, second = run(scenario())

    assert first.run_id != second.run_id
    assert first.job_id != second.job_id
    assert first.report.format == ReportFormat.SOAP
    assert second.report.format == ReportFormat.SCRIBBLED_NOTES


def test_partial_entry_points(settings, clock):
    orchestrator, _ = build(settings, clock, ["done"])

    transcript = run(orchestrator.transcribe_only(AUDIO))
    report = run(orchestrator.generate_report_only(transcript, ReportFormat.SOAP))

    assert transcript == "Patient reports improved mood."
    assert report.sections["Plan"] == ["Continue weekly sessions."]


def test_default_format_comes_from_settings(clock):
    settings = get_settings_for_testing(default_report_format="BIRP")
    generator = MockReportGenerator(settings=settings)
    orchestrator, _ = build(settings, clock, ["done"], report_generator=generator)

    result = run(orchestrator.process(AUDIO))

    assert result.report.format == ReportFormat.BIRP


def test_create_orchestrator_with_mocks(settings):
    orchestrator = create_orchestrator(settings, use_mocks=True)

    result = run(orchestrator.process(AUDIO))

    assert result.transcript == "Mock transcription text"
    assert result.report.format == ReportFormat.SOAP
