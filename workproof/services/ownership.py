"""Job ownership checks for the authenticated audit pack routes."""

from __future__ import annotations

import structlog

from workproof.core.config import CacheConfig
from workproof.core.errors import ForbiddenError, NotFoundError
from workproof.persistence.evidence_repository import EvidenceRepository
from workproof.utils.ttl_cache import TTLCache

logger = structlog.get_logger(__name__)


class OwnershipService:
    """Maps identity-provider subjects to worker records and checks job ownership.

    Both lookups hit the record store, so answers are cached with explicit
    TTLs. A negative ownership answer is cached too; a job reassigned to the
    caller becomes visible once the entry expires.
    """

    def __init__(
        self,
        repository: EvidenceRepository,
        *,
        user_cache: TTLCache,
        ownership_cache: TTLCache,
    ) -> None:
        self._repository = repository
        self._user_cache = user_cache
        self._ownership_cache = ownership_cache

    @classmethod
    def from_config(cls, repository: EvidenceRepository, config: CacheConfig) -> OwnershipService:
        return cls(
            repository,
            user_cache=TTLCache(config.user_record_ttl_seconds),
            ownership_cache=TTLCache(config.job_ownership_ttl_seconds),
        )

    async def user_record_id(self, external_user_id: str) -> str:
        cached = self._user_cache.get(external_user_id)
        if cached is not None:
            return cached
        record_id = await self._repository.find_user_record_id(external_user_id)
        if record_id is None:
            raise NotFoundError("User not found")
        self._user_cache.set(external_user_id, record_id)
        return record_id

    async def assert_owns_job(self, external_user_id: str, job_id: str) -> None:
        user_id = await self.user_record_id(external_user_id)
        key = (user_id, job_id)
        owns = self._ownership_cache.get(key)
        if owns is None:
            owner_ids = await self._repository.job_owner_ids(job_id)
            if owner_ids is None:
                raise NotFoundError("Job not found", details={"job_id": job_id})
            owns = user_id in owner_ids
            self._ownership_cache.set(key, owns)
        if not owns:
            logger.warning("Job access denied", job_id=job_id, user_record_id=user_id)
            raise ForbiddenError("Access denied", details={"job_id": job_id})
