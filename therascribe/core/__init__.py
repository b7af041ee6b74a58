"""
Core Processing Module
======================

Contains the processing components for TheraScribe:
- features: Audio feature extraction (MFCC stream)
- speaker_classifier: Two-party speaker classification and enrollment
- profile_store: Voice profile persistence
- live_diarizer: Live speaker attribution during a session
- transcription_client: Batch transcription job client
- job_poller: Backoff polling of transcription jobs
- report_generator: Clinical report generation with LLM
"""

from therascribe.core.features import ArrayAudioSource, FeatureExtractor, MicrophoneSource, compute_mfcc
from therascribe.core.speaker_classifier import SpeakerClassifier, average_feature_vectors, capture_profile
from therascribe.core.profile_store import InMemoryProfileStore, JsonFileProfileStore, create_profile_store
from therascribe.core.live_diarizer import LiveDiarizer, split_into_segments
from therascribe.core.transcription_client import HumeTranscriptionClient, MockTranscriptionClient, create_transcription_client
from therascribe.core.job_poller import AsyncioClock, BackoffPolicy, JobPoller, RecordingClock
from therascribe.core.report_generator import (
    MockReportGenerator,
    OllamaReportGenerator,
    create_report_generator,
    detect_report_format,
)

__all__ = [
    'ArrayAudioSource',
    'FeatureExtractor',
    'MicrophoneSource',
    'compute_mfcc',
    'SpeakerClassifier',
    'average_feature_vectors',
    'capture_profile',
    'InMemoryProfileStore',
    'JsonFileProfileStore',
    'create_profile_store',
    'LiveDiarizer',
    'split_into_segments',
    'HumeTranscriptionClient',
    'MockTranscriptionClient',
    'create_transcription_client',
    'AsyncioClock',
    'BackoffPolicy',
    'JobPoller',
    'RecordingClock',
    'MockReportGenerator',
    'OllamaReportGenerator',
    'create_report_generator',
    'detect_report_format',
]
