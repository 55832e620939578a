"""Counterpart directory: who the current user can talk to, with display names."""
from __future__ import annotations

import logging
from datetime import timedelta

from chat_sync.application.dto.identity import CurrentUser
from chat_sync.application.exceptions import ApiError
from chat_sync.application.ports.api import ChatApi
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.config import settings
from chat_sync.domain.entities.cache_entry import is_fresh
from chat_sync.domain.entities.profile import Profile
from chat_sync.infrastructure.cache.local_cache import LocalCache
from chat_sync.infrastructure.mappers.message import raw_to_profile
from chat_sync.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class Directory:
    def __init__(
        self,
        api: ChatApi,
        cache: LocalCache,
        store: MessageStore,
        *,
        clock: Clock | None = None,
        ttl: float | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
        limit: int | None = None,
    ) -> None:
        self._api = api
        self._cache = cache
        self._store = store
        self._clock = clock or SystemClock()
        seconds = settings.DIRECTORY_CACHE_TTL_SECONDS if ttl is None else ttl
        self._ttl = timedelta(seconds=seconds)
        self._max_attempts = max(1, settings.DIRECTORY_MAX_ATTEMPTS if max_attempts is None else max_attempts)
        self._base_delay = settings.DIRECTORY_RETRY_BASE_DELAY if base_delay is None else base_delay
        self._limit = settings.DIRECTORY_LIMIT if limit is None else limit
        self._profiles: dict[str, Profile] = {}

    @property
    def profiles(self) -> list[Profile]:
        return list(self._profiles.values())

    def _remember(self, profiles: list[Profile]) -> None:
        self._profiles = {p.id: p for p in profiles}
        self._store.set_directory(profiles)

    def resolve(self, identity: str) -> Profile:
        return self._profiles.get(identity) or Profile(id=identity)

    def learn(self, profile: Profile) -> Profile:
        """Fold a profile seen elsewhere (inbound frame, opened chat) into the directory."""
        known = self._profiles.get(profile.id)
        merged = profile if known is None else known.merge(profile)
        self._profiles[profile.id] = merged
        return merged

    async def load(self, current_user: CurrentUser | None, *, force: bool = False) -> list[Profile]:
        if not force:
            cached = await self._cache.read_directory()
            if cached is not None and is_fresh(cached, self._clock.now(), self._ttl):
                profiles = self._filter(cached.value, current_user)
                self._remember(profiles)
                return profiles

        self._store.set_loading(loading_users=True)
        try:
            raws = await self._fetch_with_backoff()
        except ApiError as exc:
            logger.warning("Directory fetch failed, falling back to cache: %s", exc.detail)
            cached = await self._cache.read_directory()
            profiles = self._filter(cached.value, current_user) if cached is not None else []
            self._remember(profiles)
            return profiles

        profiles = self._filter(
            [p for p in (raw_to_profile(raw) for raw in raws) if p is not None],
            current_user,
        )
        self._remember(profiles)
        await self._cache.write_directory(profiles)
        return profiles

    async def _fetch_with_backoff(self) -> list[dict]:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._api.get_directory()
            except ApiError as exc:
                if attempt >= self._max_attempts:
                    raise
                delay = self._base_delay * (2 ** (attempt - 1))
                logger.debug(
                    "Directory attempt %d/%d failed (%s), retrying in %.2fs",
                    attempt, self._max_attempts, exc.detail, delay,
                )
                await self._clock.sleep(delay)

    def _filter(self, profiles: list[Profile], current_user: CurrentUser | None) -> list[Profile]:
        me = current_user.id if current_user is not None else None
        seen: set[str] = set()
        out: list[Profile] = []
        for profile in profiles:
            if profile.id == me or profile.id in seen:
                continue
            seen.add(profile.id)
            out.append(profile)
            if len(out) >= self._limit:
                break
        return out

    def clear(self) -> None:
        self._remember([])
