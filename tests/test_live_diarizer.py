import numpy as np
import pytest

from therascribe.core.features import ArrayAudioSource, FeatureExtractor
from therascribe.core.live_diarizer import LiveDiarizer, split_into_segments
from therascribe.core.profile_store import InMemoryProfileStore
from therascribe.models import SpeakerRole, VoiceProfile

from conftest import run, tone


def test_enroll_then_classify_live(settings):
    """
    Verifies that:
    1. A user without a profile is enrolled from the start of the stream.
    2. The profile is saved to the store.
    3. Live classification continues on the same stream.
    4. The audio source is released when the stream ends.
    """
    samples = np.concatenate([tone(440, 1.0), tone(1500, 1.0)])
    source = ArrayAudioSource(samples)
    store = InMemoryProfileStore()

    async def scenario():
        async with FeatureExtractor(source, settings=settings) as extractor:
            diarizer = LiveDiarizer(extractor, store, user_id="therapist-1")
            assert await diarizer.initialize() is None
            await diarizer.enroll(duration_ms=500)
            roles = []
            async for vector in extractor.features():
                roles.append(diarizer.classify(vector))
            return diarizer, roles

    diarizer, roles = run(scenario())

    assert diarizer.has_profile
    assert run(store.get("therapist-1")).sample_count == 5
    assert roles == [SpeakerRole.PARTY_A] * 5 + [SpeakerRole.PARTY_B] * 10
    assert diarizer.current_role == SpeakerRole.PARTY_B
    assert source.closed


def test_run_uses_stored_profile(settings):
    store = InMemoryProfileStore()
    source = ArrayAudioSource(tone(440, 0.5))

    async def scenario():
        extractor = FeatureExtractor(source, settings=settings)
        # A profile far from any real MFCC vector
        await store.save(VoiceProfile(user_id="therapist-1", coefficients=[100.0] * 13))
        diarizer = LiveDiarizer(extractor, store, user_id="therapist-1")
        await diarizer.initialize()
        await diarizer.run()
        return diarizer

    diarizer = run(scenario())

    assert diarizer.has_profile
    assert diarizer.samples_classified == 5
    assert diarizer.current_role == SpeakerRole.PARTY_B


def test_record_utterance_builds_labeled_transcript(settings):
    extractor = FeatureExtractor(ArrayAudioSource(tone(440, 0.1)), settings=settings)
    diarizer = LiveDiarizer(extractor, InMemoryProfileStore(), user_id="therapist-1")
    diarizer.profile = VoiceProfile(user_id="therapist-1", coefficients=[0.0, 0.0])

    first = diarizer.record_utterance("Hello, who is this?", 0.0, 1.2)
    diarizer.classify(np.array([0.0, 0.01]))
    diarizer.record_utterance("  How has your week been?  ", 1.5, 3.0)
    diarizer.classify(np.array([4.0, 4.0]))
    diarizer.record_utterance("Better than last week.", 3.2, 4.0)

    assert first.role == SpeakerRole.PARTY_B
    assert diarizer.transcript.get_formatted_transcript() == (
        "Client: Hello, who is this?\n"
        "Therapist: How has your week been?\n"
        "Client: Better than last week."
    )
    stats = diarizer.transcript.get_speaker_statistics()
    assert stats[SpeakerRole.PARTY_A] == pytest.approx(1.5)
    assert stats[SpeakerRole.PARTY_B] == pytest.approx(2.0)


def test_stop_releases_source(settings):
    source = ArrayAudioSource(tone(440, 1.0))
    extractor = FeatureExtractor(source, settings=settings)
    diarizer = LiveDiarizer(extractor, InMemoryProfileStore(), user_id="therapist-1")

    run(extractor.start())
    diarizer.stop()

    assert source.closed
    assert not extractor.is_running


def test_split_into_segments():
    transcript = split_into_segments(
        "Hello there. How are you? Fine!",
        speaker_mapping={0.0: SpeakerRole.PARTY_A},
    )

    segments = transcript.segments
    assert [s.text for s in segments] == ["Hello there.", "How are you?", "Fine!"]
    assert [s.role for s in segments] == [
        SpeakerRole.PARTY_A,
        SpeakerRole.PARTY_B,
        SpeakerRole.PARTY_B,
    ]
    assert segments[0].start == 0.0
    assert segments[0].end == pytest.approx(0.6)
    assert segments[1].start == pytest.approx(1.1)


def test_split_into_segments_ignores_blank_text():
    assert split_into_segments("   ").segments == []
