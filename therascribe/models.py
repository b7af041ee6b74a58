"""
Domain Models for TheraScribe
=============================

This module defines the core data structures used throughout the library.
We use Pydantic for validation and easy conversion to/from JSON, which the
host application needs when it stores profiles and reports.

Design Principle: These models are "pure" - they have no dependencies on
external services, audio devices, or frameworks.
"""

import math
from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field, field_validator, model_validator


# =============================================================================
# Diarization
# =============================================================================

class SpeakerRole(str, Enum):
    """
    The two parties of a session.

    PartyA is the enrolled speaker (the therapist who owns the voice
    profile); PartyB is everyone else.
    """
    PARTY_A = "PartyA"
    PARTY_B = "PartyB"


DEFAULT_ROLE_LABELS: dict[SpeakerRole, str] = {
    SpeakerRole.PARTY_A: "Therapist",
    SpeakerRole.PARTY_B: "Client",
}


class VoiceProfile(BaseModel):
    """
    Reference feature vector for one user.

    The coefficients are the element-wise mean of the feature vectors
    captured during enrollment.
    """
    user_id: str = Field(..., min_length=1, description="Owner of this profile")
    coefficients: List[float] = Field(..., description="Averaged cepstral coefficients")
    sample_count: int = Field(default=1, ge=1, description="Feature vectors averaged")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("coefficients")
    @classmethod
    def _complete_vector(cls, value: List[float]) -> List[float]:
        if not value:
            raise ValueError("voice profile must have at least one coefficient")
        if not all(math.isfinite(v) for v in value):
            raise ValueError("voice profile coefficients must be finite")
        return value

    @property
    def dimension(self) -> int:
        return len(self.coefficients)

    class Config:
        from_attributes = True


class TranscriptSegment(BaseModel):
    """
    A span of text attributed to one speaker role.

    Attributes:
        role: Which party spoke
        text: What was said
        start: Offset from the start of the session in seconds
        end: End offset in seconds
    """
    role: SpeakerRole = Field(..., description="Speaker role for this segment")
    text: str = Field(default="", description="Recognised text")
    start: float = Field(..., ge=0.0, description="Segment start time in seconds")
    end: float = Field(..., ge=0.0, description="Segment end time in seconds")

    @model_validator(mode="after")
    def _ordered_bounds(self) -> "TranscriptSegment":
        if self.end < self.start:
            raise ValueError("segment end must not precede its start")
        return self

    @property
    def duration(self) -> float:
        """Returns the duration of this segment in seconds."""
        return self.end - self.start

    def to_labeled_text(self, labels: Optional[dict[SpeakerRole, str]] = None) -> str:
        """
        Returns formatted text with speaker label.

        Example:
            "Therapist: How has your week been?"
        """
        labels = labels or DEFAULT_ROLE_LABELS
        return f"{labels[self.role]}: {self.text}" if self.text else ""

    class Config:
        from_attributes = True


class LiveTranscript(BaseModel):
    """Speaker-attributed transcript built while a live capture runs."""
    segments: List[TranscriptSegment] = Field(default_factory=list)
    role_labels: dict[SpeakerRole, str] = Field(
        default_factory=lambda: dict(DEFAULT_ROLE_LABELS),
        description="Display label per role"
    )

    def get_formatted_transcript(self) -> str:
        """
        Returns a formatted transcript with speaker labels.

        Example output:
            Therapist: How has your week been?
            Client: Better than last week, honestly.
        """
        lines = []
        for segment in self.segments:
            if segment.text.strip():
                lines.append(segment.to_labeled_text(self.role_labels))
        return "\n".join(lines)

    def get_speaker_statistics(self) -> dict[SpeakerRole, float]:
        """Returns speaking time per role in seconds."""
        stats = {}
        for segment in self.segments:
            if segment.role not in stats:
                stats[segment.role] = 0.0
            stats[segment.role] += segment.duration
        return stats


# =============================================================================
# Transcription Jobs
# =============================================================================

class RemoteJobState(str, Enum):
    """Job states as reported by the transcription service."""
    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"


class JobStatus(BaseModel):
    """One answer from the transcription status endpoint."""
    state: RemoteJobState
    transcript_text: Optional[str] = None
    error_detail: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (RemoteJobState.DONE, RemoteJobState.FAILED)


class JobState(str, Enum):
    """Lifecycle of a transcription job while the poller owns it."""
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class TranscriptionJob(BaseModel):
    """
    One outstanding request to the transcription backend.

    Lives only for the duration of a poller run.
    """
    job_id: str = Field(..., min_length=1, description="Opaque upstream job identifier")
    state: JobState = Field(default=JobState.SUBMITTED)
    attempts: int = Field(default=0, description="Status checks made so far")
    delays_ms: List[float] = Field(
        default_factory=list,
        description="Every wait taken between status checks, in order"
    )
    transcript: Optional[str] = None
    error_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in (
            JobState.COMPLETED,
            JobState.FAILED,
            JobState.TIMED_OUT,
            JobState.CANCELLED,
        )

    class Config:
        # The poller updates the job in place as it progresses
        frozen = False


# =============================================================================
# Clinical Reports
# =============================================================================

class ReportFormat(str, Enum):
    """Clinical note formats a report can be generated in."""
    SOAP = "SOAP"
    BIRP = "BIRP"
    DAP = "DAP"
    SCRIBBLED_NOTES = "Scribbled Notes"


# Section keys per format. These names are the wire contract stored reports
# depend on; do not rename.
REPORT_SECTIONS: dict[ReportFormat, tuple[str, ...]] = {
    ReportFormat.SOAP: ("Subjective", "Objective", "Assessment", "Plan"),
    ReportFormat.BIRP: ("Behavior", "Intervention", "Response", "Plan"),
    ReportFormat.DAP: ("Data", "Assessment", "Plan"),
    ReportFormat.SCRIBBLED_NOTES: ("observations", "keyPoints", "followUp"),
}


class ClinicalReport(BaseModel):
    """
    A structured clinical note.

    Every section required by the format is present (possibly empty) and
    there are no extra sections. Each section is an ordered list of
    statements.
    """
    format: ReportFormat
    sections: dict[str, List[str]]
    generated: bool = Field(
        default=True,
        description="False when the model produced no usable content"
    )
    created_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="after")
    def _sections_match_format(self) -> "ClinicalReport":
        required = set(REPORT_SECTIONS[self.format])
        present = set(self.sections)
        if present != required:
            missing = sorted(required - present)
            extra = sorted(present - required)
            raise ValueError(
                f"{self.format.value} report sections mismatch "
                f"(missing: {missing}, extra: {extra})"
            )
        return self

    @classmethod
    def not_generated(cls, report_format: ReportFormat) -> "ClinicalReport":
        """The "no report generated" value: all sections present and empty."""
        return cls(
            format=report_format,
            sections={key: [] for key in REPORT_SECTIONS[report_format]},
            generated=False,
        )

    def section_names(self) -> tuple[str, ...]:
        """Section keys in the format's canonical order."""
        return REPORT_SECTIONS[self.format]

    def to_formatted_string(self) -> str:
        """Returns the report as plain text for display or export."""
        rule = "=" * 70
        lines = [rule, f"{self.format.value} NOTE".center(70), rule]
        for name in self.section_names():
            lines.append(name.upper())
            items = self.sections[name]
            if items:
                lines.extend(f"  - {item}" for item in items)
            else:
                lines.append("  (nothing documented)")
            lines.append("-" * 70)
        if not self.generated:
            lines.append("No report generated.")
        return "\n".join(lines)


# =============================================================================
# Processing
# =============================================================================

class ProcessingStage(str, Enum):
    """Coarse pipeline stages reported to the caller."""
    TRANSCRIPTION = "transcription"
    ANALYSIS = "analysis"
    COMPLETE = "complete"


class ProcessingProgress(BaseModel):
    """A (stage, percent) pair emitted while a session is processed."""
    stage: ProcessingStage
    percent: int = Field(..., ge=0, le=100)


class SessionResult(BaseModel):
    """
    Complete result of processing one session recording.

    Only produced when every stage succeeded.
    """
    run_id: str = Field(..., description="Identifier of this processing run")
    job_id: str = Field(..., description="Upstream transcription job identifier")
    transcript: str = Field(..., description="Raw transcript text")
    report: ClinicalReport
    processing_time_seconds: Optional[float] = None

    class Config:
        from_attributes = True
