"""
Transcription Job Client for TheraScribe
========================================

Thin typed wrapper over the batch transcription API (Hume). The service is
asynchronous: a recording is submitted, a job id comes back, and the job's
status is queried until it is done.

Architecture Pattern: Protocol-based Service
--------------------------------------------
TranscriptionClientProtocol describes what a client does, so the poller and
the orchestrator work the same against the HTTP client and the scripted
mock used in tests.

No retries live here. A non-success response becomes a RemoteServiceError
immediately; waiting and retrying belong to the JobPoller.
"""

import asyncio
import logging
import uuid
from typing import Iterable, List, Optional, Protocol, Union

import requests

from therascribe.config import Settings, get_settings
from therascribe.exceptions import (
    ConfigurationError,
    RemoteServiceError,
    ValidationError,
)
from therascribe.models import JobStatus, RemoteJobState


logger = logging.getLogger(__name__)


SERVICE_NAME = "transcription"


class TranscriptionClientProtocol(Protocol):
    """
    Protocol defining the interface for transcription job clients.

    Any class with matching async submit / fetch_status methods is a
    valid client.
    """

    async def submit(self, audio: bytes, mime_type: str = "audio/wav") -> str:
        """
        Submit a recording for transcription.

        Returns:
            The upstream job id

        Raises:
            RemoteServiceError: On a non-success response
        """
        ...

    async def fetch_status(self, job_id: str) -> JobStatus:
        """
        Fetch the current status of a job.

        Raises:
            RemoteServiceError: On a non-success response
        """
        ...


class HumeTranscriptionClient:
    """
    Client for the Hume batch transcription endpoints.

    requests is blocking, so each call runs in a worker thread via
    asyncio.to_thread. If the awaiting task is cancelled the HTTP call
    finishes in its thread but its result is discarded.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings or get_settings()
        self._session = session

        logger.info(f"HumeTranscriptionClient initialized for {self.settings.hume_base_url}")

    @property
    def session(self) -> requests.Session:
        """Lazy-create the HTTP session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def _headers(self) -> dict:
        # Read the key per request; a missing key fails this call only
        api_key = self.settings.hume_api_key
        if not api_key:
            raise ConfigurationError(
                setting_name="hume_api_key",
                issue="no API key configured for the transcription service"
            )
        return {"X-Hume-Api-Key": api_key}

    def _url(self, path: str) -> str:
        return f"{self.settings.hume_base_url.rstrip('/')}/{path.lstrip('/')}"

    async def submit(self, audio: bytes, mime_type: str = "audio/wav") -> str:
        if not audio:
            raise ValidationError("cannot submit empty audio for transcription")

        logger.info(f"Submitting {len(audio)} bytes ({mime_type}) for transcription")
        data = await asyncio.to_thread(self._post_audio, audio, mime_type)

        job_id = data.get("job_id") if isinstance(data, dict) else None
        if not job_id:
            raise RemoteServiceError(
                service=SERVICE_NAME,
                message="submission response did not include a job_id"
            )
        logger.info(f"Transcription job submitted: {job_id}")
        return str(job_id)

    async def fetch_status(self, job_id: str) -> JobStatus:
        data = await asyncio.to_thread(self._get_job, job_id)
        status = parse_job_status(data)
        logger.debug(f"Job {job_id} status: {status.state.value}")
        return status

    def _post_audio(self, audio: bytes, mime_type: str) -> dict:
        headers = self._headers()
        try:
            response = self.session.post(
                self._url("batch/audio"),
                headers=headers,
                files={"file": ("session.wav", audio, mime_type)},
                timeout=self.settings.transcription_request_timeout,
            )
        except requests.RequestException as e:
            raise RemoteServiceError(service=SERVICE_NAME, message=str(e)) from e
        return _json_or_raise(response)

    def _get_job(self, job_id: str) -> dict:
        headers = self._headers()
        try:
            response = self.session.get(
                self._url(f"batch/jobs/{job_id}"),
                headers=headers,
                timeout=self.settings.transcription_request_timeout,
            )
        except requests.RequestException as e:
            raise RemoteServiceError(service=SERVICE_NAME, message=str(e)) from e
        return _json_or_raise(response)


def _json_or_raise(response: requests.Response) -> dict:
    """Decode a JSON body, turning non-success responses into RemoteServiceError."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if not response.ok:
        message = None
        if isinstance(body, dict):
            error = body.get("error")
            message = body.get("message") or (
                error.get("message") if isinstance(error, dict) else error
            )
        raise RemoteServiceError(
            service=SERVICE_NAME,
            message=str(message or response.reason or "request failed"),
            status_code=response.status_code,
        )

    if not isinstance(body, dict):
        raise RemoteServiceError(
            service=SERVICE_NAME,
            message="response body is not a JSON object",
            status_code=response.status_code,
        )
    return body


def parse_job_status(data: dict) -> JobStatus:
    """
    Convert a raw job document into a JobStatus.

    Raises:
        RemoteServiceError: If the state is missing or unrecognised
    """
    raw_state = data.get("state")
    try:
        state = RemoteJobState(raw_state)
    except ValueError:
        raise RemoteServiceError(
            service=SERVICE_NAME,
            message=f"unrecognised job state: {raw_state!r}"
        )

    if state == RemoteJobState.DONE:
        transcriptions = (data.get("results") or {}).get("transcriptions") or []
        text = transcriptions[0].get("text", "") if transcriptions else ""
        return JobStatus(state=state, transcript_text=text or "")

    if state == RemoteJobState.FAILED:
        return JobStatus(state=state, error_detail=data.get("error") or "Unknown error")

    return JobStatus(state=state)


class MockTranscriptionClient:
    """
    Scripted client for testing.

    Each fetch_status call returns (or raises) the next entry of the
    script; the last entry repeats once the script is exhausted.

    Usage in tests:
        client = MockTranscriptionClient(
            statuses=["pending", "pending", "done"],
            transcript="Patient reports improved mood."
        )
    """

    def __init__(
        self,
        statuses: Optional[Iterable[Union[str, RemoteJobState, JobStatus, Exception]]] = None,
        transcript: str = "Mock transcription text",
        error_detail: str = "Mock transcription failure",
        submit_error: Optional[Exception] = None,
    ):
        self.transcript = transcript
        self.error_detail = error_detail
        self.submit_error = submit_error
        self._script: List[Union[JobStatus, Exception]] = [
            self._to_status(entry) for entry in (statuses or ["done"])
        ]
        self.submitted: List[str] = []
        self.status_calls: List[str] = []

    def _to_status(self, entry) -> Union[JobStatus, Exception]:
        if isinstance(entry, (JobStatus, Exception)):
            return entry
        state = RemoteJobState(entry)
        if state == RemoteJobState.DONE:
            return JobStatus(state=state, transcript_text=self.transcript)
        if state == RemoteJobState.FAILED:
            return JobStatus(state=state, error_detail=self.error_detail)
        return JobStatus(state=state)

    async def submit(self, audio: bytes, mime_type: str = "audio/wav") -> str:
        if self.submit_error is not None:
            raise self.submit_error
        if not audio:
            raise ValidationError("cannot submit empty audio for transcription")
        job_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.submitted.append(job_id)
        return job_id

    async def fetch_status(self, job_id: str) -> JobStatus:
        index = min(len(self.status_calls), len(self._script) - 1)
        self.status_calls.append(job_id)
        entry = self._script[index]
        if isinstance(entry, Exception):
            raise entry
        return entry


# =============================================================================
# Factory Function
# =============================================================================

def create_transcription_client(
    settings: Optional[Settings] = None,
    use_mock: bool = False,
    statuses: Optional[list] = None,
    transcript: str = "Mock transcription text",
) -> TranscriptionClientProtocol:
    """
    Factory function to create the appropriate transcription client.

    Args:
        settings: Library settings
        use_mock: If True, returns a scripted mock client
        statuses: Status script for the mock client
        transcript: Transcript returned by the mock when done

    Returns:
        A transcription client instance
    """
    if use_mock:
        logger.info("Creating mock transcription client")
        return MockTranscriptionClient(statuses=statuses, transcript=transcript)

    logger.info("Creating Hume transcription client")
    return HumeTranscriptionClient(settings=settings)
