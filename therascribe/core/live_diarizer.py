"""
Live Diarization Session

Combines the feature extractor, the speaker classifier and the profile
store into one object that follows a live capture:

    async with FeatureExtractor(MicrophoneSource()) as extractor:
        diarizer = LiveDiarizer(extractor, store, user_id="therapist-1")
        await diarizer.initialize()
        if not diarizer.has_profile:
            await diarizer.enroll()
        task = asyncio.create_task(diarizer.run())
        ...
        diarizer.record_utterance("How has your week been?", 12.4, 14.0)
        ...
        diarizer.stop()
        await task

Speech recognition itself happens elsewhere; recognised utterances are
attributed to whichever role the classifier saw most recently.
"""

import logging
import re
from typing import Optional

from therascribe.core.features import FeatureExtractor
from therascribe.core.profile_store import SpeakerProfileStore
from therascribe.core.speaker_classifier import SpeakerClassifier, capture_profile
from therascribe.models import (
    LiveTranscript,
    SpeakerRole,
    TranscriptSegment,
    VoiceProfile,
)


logger = logging.getLogger(__name__)


class LiveDiarizer:
    """Tracks the current speaker of a live session and builds its transcript."""

    def __init__(
        self,
        extractor: FeatureExtractor,
        store: SpeakerProfileStore,
        user_id: str,
        classifier: Optional[SpeakerClassifier] = None,
    ):
        self.extractor = extractor
        self.store = store
        self.user_id = user_id
        self.classifier = classifier or SpeakerClassifier(settings=extractor.settings)
        self.profile: Optional[VoiceProfile] = None
        self.current_role: Optional[SpeakerRole] = None
        self.samples_classified = 0
        self.transcript = LiveTranscript(
            role_labels={
                SpeakerRole.PARTY_A: extractor.settings.therapist_label,
                SpeakerRole.PARTY_B: extractor.settings.client_label,
            }
        )

    @property
    def has_profile(self) -> bool:
        return self.profile is not None

    async def initialize(self) -> Optional[VoiceProfile]:
        """Load the user's stored voice profile, if any."""
        self.profile = await self.store.get(self.user_id)
        if self.profile is None:
            logger.info(f"No voice profile for {self.user_id}; enrollment needed")
        else:
            logger.info(
                f"Loaded voice profile for {self.user_id} "
                f"({self.profile.dimension} coefficients)"
            )
        return self.profile

    async def enroll(self, duration_ms: Optional[float] = None) -> VoiceProfile:
        """Capture a fresh profile from the live stream and persist it."""
        profile = await capture_profile(self.extractor, self.user_id, duration_ms)
        self.profile = await self.store.save(profile)
        return self.profile

    def classify(self, vector) -> SpeakerRole:
        role = self.classifier.classify(self.profile, vector)
        if role != self.current_role:
            logger.debug(f"Speaker changed to {role.value}")
        self.current_role = role
        self.samples_classified += 1
        return role

    async def run(self) -> None:
        """Classify every vector of the stream until it ends or stop() is called."""
        async for vector in self.extractor.features():
            self.classify(vector)
            if not self.extractor.is_running:
                break
        logger.info(f"Live diarization ended after {self.samples_classified} samples")

    def record_utterance(self, text: str, start: float, end: float) -> TranscriptSegment:
        """Attribute a recognised utterance to the current speaker."""
        segment = TranscriptSegment(
            role=self.current_role or SpeakerRole.PARTY_B,
            text=text.strip(),
            start=start,
            end=end,
        )
        self.transcript.segments.append(segment)
        return segment

    def stop(self) -> None:
        """Release the audio device."""
        self.extractor.stop()


_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")


def split_into_segments(
    text: str,
    speaker_mapping: Optional[dict[float, SpeakerRole]] = None,
    seconds_per_char: float = 0.05,
    pause: float = 0.5,
) -> LiveTranscript:
    """
    Split plain transcript text into sentence segments with estimated timing.

    Used when only text is available (no live capture). Each sentence lasts
    len(sentence) * seconds_per_char, followed by a short pause. A sentence
    whose start offset appears in speaker_mapping gets that role; every
    other sentence is PartyB.
    """
    speaker_mapping = speaker_mapping or {}
    transcript = LiveTranscript()
    start = 0.0
    for sentence in _SENTENCE_BREAK.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        length = len(sentence) * seconds_per_char
        transcript.segments.append(
            TranscriptSegment(
                role=speaker_mapping.get(start, SpeakerRole.PARTY_B),
                text=sentence,
                start=start,
                end=start + length,
            )
        )
        start += length + pause
    return transcript
