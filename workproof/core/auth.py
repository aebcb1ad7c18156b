"""Auth0 JWT verification for the worker-facing audit pack routes.

The verification route is public and never depends on this module.
"""

import asyncio
import time
from collections.abc import Callable
from typing import Annotated, Any

import httpx
import structlog
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from workproof.core.config import AppEnvironment, Auth0Config, get_settings
from workproof.core.errors import ValidationError
from workproof.utils.ttl_cache import TTLCache

logger = structlog.get_logger(__name__)

INVALID_OR_EXPIRED_TOKEN_MSG = "Invalid or expired token"
LOCAL_DEV_USER_ID = "local-dev-worker"
RSA_KEY_FIELDS = ("kty", "kid", "use", "n", "e")

_bearer = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """Authenticated worker. ``user_id`` is the identity provider subject."""

    user_id: str
    email: str | None = None
    name: str | None = None


class JwksProvider:
    """Signing keys of the Auth0 tenant, cached for ``jwks_cache_ttl`` seconds.

    The last key set that downloaded cleanly is kept past its expiry and
    served while the tenant is unreachable.
    """

    def __init__(
        self,
        config: Auth0Config,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._url = config.jwks_url
        self._transport = transport
        self._fresh = TTLCache(config.jwks_cache_ttl, max_entries=1, clock=clock)
        self._last_good: dict[str, Any] | None = None
        self._lock = asyncio.Lock()
        self._client: httpx.AsyncClient | None = None

    async def get(self) -> dict[str, Any]:
        async with self._lock:
            cached = self._fresh.get(self._url)
            if cached is not None:
                return cached
            try:
                jwks = await self._download()
            except httpx.HTTPError as exc:
                logger.error("JWKS download failed", jwks_url=self._url, error=str(exc))
                if self._last_good is None:
                    raise ValidationError(
                        "Unable to verify token: authentication service unavailable"
                    ) from exc
                logger.warning("Serving stale JWKS", jwks_url=self._url)
                return self._last_good
            self._fresh.set(self._url, jwks)
            self._last_good = jwks
            return jwks

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _download(self) -> dict[str, Any]:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(10.0), transport=self._transport
            )
        response = await self._client.get(self._url)
        response.raise_for_status()
        return response.json()


_jwks_provider: JwksProvider | None = None


def get_jwks_provider() -> JwksProvider:
    global _jwks_provider
    if _jwks_provider is None:
        _jwks_provider = JwksProvider(get_settings().auth0)
    return _jwks_provider


async def close_jwks_provider() -> None:
    """Close the JWKS HTTP client. Called on application shutdown."""
    global _jwks_provider
    if _jwks_provider is not None:
        await _jwks_provider.close()
    _jwks_provider = None


async def fetch_jwks() -> dict[str, Any]:
    return await get_jwks_provider().get()


def signing_key(jwks: dict[str, Any], kid: str | None) -> dict[str, str] | None:
    """The RSA key in ``jwks`` whose id matches the token header, if any."""
    if not kid:
        return None
    for key in jwks.get("keys", []):
        if key.get("kid") == kid:
            return {name: key[name] for name in RSA_KEY_FIELDS if name in key}
    return None


async def verify_token_async(token: str) -> dict[str, Any]:
    """Verify a bearer token against the tenant JWKS and return its claims."""
    config = get_settings().auth0

    try:
        kid = jwt.get_unverified_header(token).get("kid")
        key = signing_key(await fetch_jwks(), kid)
        if key is None:
            logger.warning("Token signed with an unknown key", kid=kid)
            raise ValidationError(INVALID_OR_EXPIRED_TOKEN_MSG)

        return jwt.decode(
            token,
            key,
            algorithms=config.algorithms_list,
            audience=config.audience,
            issuer=config.issuer_url,
        )
    except jwt.ExpiredSignatureError:
        raise ValidationError(INVALID_OR_EXPIRED_TOKEN_MSG) from None
    except JWTError as exc:
        logger.warning("JWT verification failed", error=str(exc))
        raise ValidationError(INVALID_OR_EXPIRED_TOKEN_MSG) from exc


def _create_bypass_user() -> AuthenticatedUser:
    """Worker identity used when JWT validation is bypassed locally."""
    return AuthenticatedUser(
        user_id=LOCAL_DEV_USER_ID,
        email="local-dev@example.com",
        name="Local Development Worker",
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> AuthenticatedUser:
    """Resolve the calling worker from the bearer token."""
    settings = get_settings()

    if settings.security.skip_jwt_validation:
        if settings.app.env != AppEnvironment.LOCAL:
            logger.error("JWT bypass refused outside local", app_env=settings.app.env.value)
            raise ValidationError("JWT bypass is only allowed in local environment")
        return _create_bypass_user()

    if credentials is None:
        raise ValidationError("Missing authorization header")

    claims = await verify_token_async(credentials.credentials)
    subject = claims.get("sub")
    if not subject:
        raise ValidationError(INVALID_OR_EXPIRED_TOKEN_MSG)

    return AuthenticatedUser(
        user_id=subject,
        email=claims.get("email"),
        name=claims.get("name"),
    )


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
