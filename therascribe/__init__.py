"""
TheraScribe
===========

Session audio processing for therapy practices: live two-party speaker
attribution, batch transcription and structured clinical notes.

    from therascribe import create_orchestrator

    orchestrator = create_orchestrator()
    result = await orchestrator.process(audio_bytes, report_format="SOAP")
"""

from therascribe.config import Settings, configure_logging, get_settings
from therascribe.pipeline import SessionProcessingOrchestrator, create_orchestrator

__version__ = "0.1.0"

__all__ = [
    'Settings',
    'configure_logging',
    'get_settings',
    'SessionProcessingOrchestrator',
    'create_orchestrator',
]
