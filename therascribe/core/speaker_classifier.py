"""
Speaker Classification Module

Decides which of the two session parties is speaking from a single feature
vector. The enrolled speaker (PartyA) is represented by a voice profile: the
average of the feature vectors captured during an enrollment window. A
sample closer to that profile than the configured threshold is PartyA;
anything else is PartyB.

This is a nearest-prototype, single-threshold binary classifier. It needs
no training beyond averaging enrollment samples, and it is deterministic.
"""

import logging
import math
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence, Union

import numpy as np

from therascribe.config import Settings, get_settings
from therascribe.core.features import FeatureExtractor, FeatureVector
from therascribe.exceptions import ValidationError
from therascribe.models import SpeakerRole, VoiceProfile


logger = logging.getLogger(__name__)


ProfileLike = Union[VoiceProfile, Sequence[float], np.ndarray]


# =============================================================================
# Protocol Definition (for dependency injection and testing)
# =============================================================================


class SpeakerClassifierProtocol(Protocol):
    """Protocol defining the interface for speaker classifiers."""

    def classify(
        self,
        profile: Optional[ProfileLike],
        sample: FeatureVector
    ) -> SpeakerRole:
        ...


# =============================================================================
# Threshold Classifier
# =============================================================================


class SpeakerClassifier:
    """
    Euclidean-distance classifier against a single voice profile.

    Usage:
        classifier = SpeakerClassifier(threshold=0.1)
        role = classifier.classify(profile, vector)
    """

    def __init__(
        self,
        threshold: Optional[float] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.threshold = (
            threshold if threshold is not None
            else self.settings.speaker_match_threshold
        )
        if not self.threshold > 0:
            raise ValidationError("threshold must be positive", threshold=self.threshold)

    def distance(self, profile: ProfileLike, sample: FeatureVector) -> float:
        """
        Euclidean distance between a profile and a sample.

        Raises:
            ValidationError: If the two vectors differ in length
        """
        reference = _as_vector(profile)
        current = _as_vector(sample)
        if reference.shape != current.shape:
            raise ValidationError(
                f"feature dimensionality mismatch: profile has {reference.size} "
                f"coefficients, sample has {current.size}",
                profile_dimension=int(reference.size),
                sample_dimension=int(current.size),
            )
        return float(np.linalg.norm(current - reference))

    def classify(
        self,
        profile: Optional[ProfileLike],
        sample: FeatureVector
    ) -> SpeakerRole:
        """
        Attribute a sample to PartyA or PartyB.

        Without a profile there is nothing to match against and the sample
        is attributed to PartyB. That conflates "unknown" with "the other
        party"; callers that care should check for a profile first.
        """
        if profile is None:
            logger.debug("No voice profile available, unknown speaker treated as PartyB")
            return SpeakerRole.PARTY_B

        distance = self.distance(profile, sample)
        role = SpeakerRole.PARTY_A if distance < self.threshold else SpeakerRole.PARTY_B
        logger.debug(f"Speaker distance {distance:.4f} (threshold {self.threshold}) -> {role.value}")
        return role


# =============================================================================
# Enrollment
# =============================================================================


def average_feature_vectors(vectors: Iterable[FeatureVector]) -> np.ndarray:
    """
    Element-wise arithmetic mean of equally sized feature vectors.

    Raises:
        ValidationError: If there are no vectors or their sizes differ
    """
    stacked = [_as_vector(v) for v in vectors]
    if not stacked:
        raise ValidationError("cannot build a voice profile from zero samples")

    dimension = stacked[0].size
    for index, vector in enumerate(stacked):
        if vector.size != dimension:
            raise ValidationError(
                f"sample {index} has {vector.size} coefficients, expected {dimension}",
                expected_dimension=dimension,
                sample_dimension=int(vector.size),
            )
    return np.mean(np.vstack(stacked), axis=0)


async def capture_profile(
    extractor: FeatureExtractor,
    user_id: str,
    duration_ms: Optional[float] = None,
) -> VoiceProfile:
    """
    Capture a voice profile from the extractor's stream.

    Collects feature vectors covering duration_ms at the extractor's
    cadence (fewer if the stream ends first) and averages them.

    Args:
        extractor: A started or startable feature extractor
        user_id: Owner of the new profile
        duration_ms: Capture window, defaults to settings.enrollment_duration_ms

    Returns:
        The new VoiceProfile (not yet persisted)

    Raises:
        ValidationError: If no samples were captured
    """
    duration_ms = duration_ms or extractor.settings.enrollment_duration_ms
    wanted = max(1, math.ceil(duration_ms / extractor.cadence_ms))

    logger.info(f"Capturing voice profile for {user_id}: {duration_ms:.0f} ms ({wanted} windows)")

    collected = []
    # Leave the shared stream open: live classification continues on it
    async for vector in extractor.features():
        collected.append(vector)
        if len(collected) >= wanted:
            break

    if not collected:
        raise ValidationError(
            "enrollment captured no audio samples",
            user_id=user_id,
            duration_ms=duration_ms,
        )
    if len(collected) < wanted:
        logger.warning(
            f"Audio stream ended early: {len(collected)} of {wanted} enrollment windows captured"
        )

    mean = average_feature_vectors(collected)
    now = datetime.now()
    profile = VoiceProfile(
        user_id=user_id,
        coefficients=mean.tolist(),
        sample_count=len(collected),
        created_at=now,
        updated_at=now,
    )
    logger.info(f"Voice profile captured for {user_id} from {len(collected)} samples")
    return profile


def _as_vector(value: ProfileLike) -> np.ndarray:
    if isinstance(value, VoiceProfile):
        value = value.coefficients
    return np.asarray(value, dtype=np.float64).reshape(-1)
