"""
Voice Profile Store
===================

Keeps one voice profile per user. The store is a narrow key-value contract;
where profiles actually live belongs to the host application. Two
implementations ship with the library:

- InMemoryProfileStore: process-local, for tests and short-lived sessions
- JsonFileProfileStore: a single JSON document keyed by user id
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Protocol

from pydantic import ValidationError as PydanticValidationError

from therascribe.config import Settings, get_settings
from therascribe.exceptions import ProfileStoreError
from therascribe.models import VoiceProfile


logger = logging.getLogger(__name__)


class SpeakerProfileStore(Protocol):
    """
    Protocol for voice profile persistence.

    save() has upsert semantics: it creates the profile if absent and
    overwrites it if present, keeping the original creation time.
    """

    async def get(self, user_id: str) -> Optional[VoiceProfile]:
        ...

    async def save(self, profile: VoiceProfile) -> VoiceProfile:
        ...

    async def delete(self, user_id: str) -> bool:
        ...


def _merge_for_upsert(
    existing: Optional[VoiceProfile],
    profile: VoiceProfile
) -> VoiceProfile:
    now = datetime.now()
    created_at = existing.created_at if existing else profile.created_at
    return profile.model_copy(update={"created_at": created_at, "updated_at": now})


class InMemoryProfileStore:
    """Dictionary-backed store."""

    def __init__(self):
        self._profiles: Dict[str, VoiceProfile] = {}

    async def get(self, user_id: str) -> Optional[VoiceProfile]:
        return self._profiles.get(user_id)

    async def save(self, profile: VoiceProfile) -> VoiceProfile:
        stored = _merge_for_upsert(self._profiles.get(profile.user_id), profile)
        self._profiles[profile.user_id] = stored
        logger.debug(f"Saved voice profile for {profile.user_id}")
        return stored

    async def delete(self, user_id: str) -> bool:
        return self._profiles.pop(user_id, None) is not None


class JsonFileProfileStore:
    """
    Store all profiles in one JSON file.

    File layout:
        {"profiles": {"<user_id>": {<VoiceProfile fields>}, ...}}

    File access runs in a worker thread; concurrent writers in the same
    process are serialised with a lock.
    """

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def _load(self) -> Dict[str, VoiceProfile]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return {
                user_id: VoiceProfile.model_validate(raw)
                for user_id, raw in data.get("profiles", {}).items()
            }
        except (OSError, json.JSONDecodeError, AttributeError, PydanticValidationError) as e:
            raise ProfileStoreError("read", f"{self.path}: {e}") from e

    def _write(self, profiles: Dict[str, VoiceProfile]) -> None:
        payload = {
            "profiles": {
                user_id: profile.model_dump(mode="json")
                for user_id, profile in profiles.items()
            }
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            tmp_path.replace(self.path)
        except OSError as e:
            raise ProfileStoreError("write", f"{self.path}: {e}") from e

    async def get(self, user_id: str) -> Optional[VoiceProfile]:
        profiles = await asyncio.to_thread(self._load)
        return profiles.get(user_id)

    async def save(self, profile: VoiceProfile) -> VoiceProfile:
        async with self._lock:
            profiles = await asyncio.to_thread(self._load)
            stored = _merge_for_upsert(profiles.get(profile.user_id), profile)
            profiles[profile.user_id] = stored
            await asyncio.to_thread(self._write, profiles)
        logger.info(f"Saved voice profile for {profile.user_id} to {self.path}")
        return stored

    async def delete(self, user_id: str) -> bool:
        async with self._lock:
            profiles = await asyncio.to_thread(self._load)
            if profiles.pop(user_id, None) is None:
                return False
            await asyncio.to_thread(self._write, profiles)
        logger.info(f"Deleted voice profile for {user_id}")
        return True


# =============================================================================
# Factory Function
# =============================================================================

def create_profile_store(
    settings: Optional[Settings] = None,
    use_memory: bool = False
) -> SpeakerProfileStore:
    """
    Factory function to create a voice profile store.

    Args:
        settings: Library settings
        use_memory: If True, returns a process-local store

    Returns:
        A profile store instance
    """
    if use_memory:
        logger.info("Creating in-memory voice profile store")
        return InMemoryProfileStore()

    settings = settings or get_settings()
    logger.info(f"Creating JSON voice profile store at {settings.profile_store_path}")
    return JsonFileProfileStore(settings.profile_store_path)
